# api.py
from __future__ import annotations

import hmac
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Query
from fastapi.responses import JSONResponse

from backfill import run_backfill
from cache import TTLCache
from config_utils import Settings, load_settings
from helpers import hours_ago, iso, now_epoch, utcnow
from ioda_client import IODAClient
from logging_utils import configure_logging, get_logger
from pipeline import IngestPipeline
from serve import ReadService
from store import Store

logger = get_logger(__name__)

# on-demand data, refreshed upstream every few minutes
CACHE_SHORT = "public, s-maxage=300, stale-while-revalidate=60"
# archived data, refreshed once a day
CACHE_DAILY = "public, s-maxage=86400, stale-while-revalidate=3600"
CACHE_STALE = "public, s-maxage=1800"
NO_STORE = "no-store"


def _authorized(expected: Optional[str], *provided: Optional[str]) -> bool:
    # no configured secret means writes are closed, not open
    if not expected:
        return False
    return any(
        p is not None and hmac.compare_digest(p.encode(), expected.encode())
        for p in provided
    )


def _unauthorized() -> JSONResponse:
    return JSONResponse({"error": "Unauthorized"}, status_code=401)


def _json(body: Dict[str, Any], cache_control: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Cache-Control": cache_control})


def _read_response(body: Dict[str, Any]) -> JSONResponse:
    failed = body.pop("failed", False)
    stale = body.pop("stale", False)
    if failed:
        return _json(body, NO_STORE, status_code=502)
    return _json(body, CACHE_STALE if stale else CACHE_SHORT)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    client: Optional[IODAClient] = None,
    cache: Optional[TTLCache] = None,
) -> FastAPI:
    """
    Build the app. Run with:
      uvicorn api:create_app --factory
    """
    if settings is None:
        settings = load_settings()
        configure_logging(settings.log_level, json_format=settings.log_json)
    store = store or Store(settings.db_url)
    client = client or IODAClient(settings.base_url, timeout=settings.request_timeout)
    cache = cache or TTLCache(ttl=settings.sync.live_cache_ttl_seconds)
    pipeline = IngestPipeline(client, store, settings.sync, settings.regions)
    reader = ReadService(store, pipeline, settings.sync, cache)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await client.aclose()

    app = FastAPI(title="Connectivity Monitor", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.pipeline = pipeline
    app.state.reader = reader

    @app.get("/api/ioda/sync")
    async def ioda_sync(
        force: bool = False,
        backfill: bool = False,
        entity_type: str = Query(settings.sync.default_entity_type),
        entity_code: str = Query(settings.sync.default_entity_code),
        from_: Optional[int] = Query(None, alias="from"),
        until: Optional[int] = None,
        secret: Optional[str] = None,
        x_sync_secret: Optional[str] = Header(None),
    ):
        if (force or backfill) and not _authorized(
            settings.sync_secret, secret, x_sync_secret
        ):
            logger.warning("unauthorized_sync", force=force, backfill=backfill)
            return _unauthorized()

        try:
            if backfill:
                summary = await run_backfill(
                    pipeline,
                    entity_type,
                    entity_code,
                    from_ if from_ is not None else settings.sync.backfill_start,
                    until if until is not None else now_epoch(),
                    chunk_seconds=settings.sync.backfill_chunk_seconds,
                    pause=settings.sync.backfill_pause_seconds,
                )
                return _json(summary.to_dict(), NO_STORE)

            if force:
                result = await pipeline.sync_latest(entity_type, entity_code)
                body = result.to_dict()
                body["syncedAt"] = iso(utcnow())
                return _json(body, NO_STORE)

            now = now_epoch()
            payload = await reader.read(
                entity_type,
                entity_code,
                from_ if from_ is not None else hours_ago(24, now=now),
                until if until is not None else now,
            )
            if payload.failed:
                return _json(payload.to_dict(), NO_STORE, status_code=502)
            return _json(payload.to_dict(), CACHE_STALE if payload.stale else CACHE_DAILY)
        except Exception as exc:
            logger.exception("sync_route_failed")
            return JSONResponse({"error": str(exc)}, status_code=500)

    @app.get("/api/ioda/sync-subnational")
    async def ioda_sync_subnational(
        force: bool = False,
        datasource: str = "bgp",
        outages: bool = False,
        secret: Optional[str] = None,
        x_sync_secret: Optional[str] = Header(None),
    ):
        if force and not _authorized(settings.sync_secret, secret, x_sync_secret):
            logger.warning("unauthorized_sync", scope="subnational")
            return _unauthorized()

        try:
            if force:
                return _json(await pipeline.sync_regions(), NO_STORE)
            if outages:
                return _read_response(await reader.read_region_outages())
            return _read_response(await reader.read_region_signals(datasource))
        except Exception as exc:
            logger.exception("subnational_route_failed")
            return JSONResponse({"error": str(exc)}, status_code=500)

    @app.get("/api/ioda/regions")
    async def ioda_regions(
        datasource: str = "bgp",
        hours: int = Query(24, ge=1),
    ):
        return _read_response(
            await reader.live_region_signals(datasource, hours=min(hours, 168))
        )

    @app.get("/api/ioda/signals")
    async def ioda_signals(
        entity_type: str = Query(settings.sync.default_entity_type),
        entity_code: str = Query(settings.sync.default_entity_code),
        hours: int = Query(24, ge=1),
    ):
        return _read_response(
            await reader.live_entity(entity_type, entity_code, hours=min(hours, 168))
        )

    @app.get("/api/ioda/outages")
    async def ioda_outages():
        return _read_response(await reader.live_outage_scores())

    return app
