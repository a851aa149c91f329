# serve.py
from __future__ import annotations

import datetime as dt
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from cache import TTLCache
from config_utils import SyncSettings
from helpers import hours_ago, iso
from logging_utils import get_logger
from pipeline import IngestPipeline
from series import OutageEvent, RegionSeries, SignalPoint
from status import ConnectivityStatus, OutageScore, derive_status
from store import Store

logger = get_logger(__name__)

STALE_WARNING = "Upstream unavailable, serving stored data"
NO_DATA_ERROR = "Upstream unavailable and no stored data"


@dataclass
class DashboardPayload:
    signals: List[SignalPoint] = field(default_factory=list)
    events: List[OutageEvent] = field(default_factory=list)
    status: ConnectivityStatus = ConnectivityStatus.NO_DATA
    fetched_at: Optional[str] = None
    error: Optional[str] = None
    # served from history after a failed refresh
    stale: bool = False
    # refresh failed and there was nothing to fall back on
    failed: bool = False
    refreshed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signals": [p.to_dict() for p in self.signals],
            "events": [e.to_dict() for e in self.events],
            "status": self.status.value,
            "fetchedAt": self.fetched_at,
            "error": self.error,
        }


class ReadService:
    """
    Serves stored data, refreshing it first when it has gone stale:

      FRESH                          -> serve from store
      STALE, refresh ok              -> persist, serve fresh
      STALE, refresh fails, history  -> serve stale with a warning
      STALE, refresh fails, nothing  -> error payload
    """

    def __init__(
        self,
        store: Store,
        pipeline: IngestPipeline,
        settings: SyncSettings,
        cache: TTLCache,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.pipeline = pipeline
        self.settings = settings
        self.cache = cache
        self._clock = clock

    def is_stale(self, latest: Optional[dt.datetime], now: float) -> bool:
        if latest is None:
            return True
        return now - latest.timestamp() > self.settings.refresh_interval_seconds

    async def read(
        self,
        entity_type: str,
        entity_code: str,
        from_epoch: int,
        until_epoch: int,
    ) -> DashboardPayload:
        now = self._clock()
        latest = self.store.latest_signal_update(entity_type, entity_code)
        payload = DashboardPayload()

        if not self.is_stale(latest, now):
            return self._from_store(payload, entity_type, entity_code, from_epoch, until_epoch, now)

        logger.info(
            "refresh_triggered",
            entity_type=entity_type,
            entity_code=entity_code,
            last_update=iso(latest) if latest else None,
        )
        result = await self.pipeline.sync_latest(entity_type, entity_code, now=int(now))
        payload.refreshed = True

        if not result.fetched_anything:
            if latest is None:
                logger.warning("refresh_failed_no_history", entity_code=entity_code)
                payload.error = NO_DATA_ERROR
                payload.failed = True
                payload.fetched_at = iso(dt.datetime.fromtimestamp(now, dt.timezone.utc))
                return payload
            logger.warning("serving_stale", entity_code=entity_code)
            payload.error = STALE_WARNING
            payload.stale = True
            return self._from_store(payload, entity_type, entity_code, from_epoch, until_epoch, now)

        if result.error:
            # not persisted; serve what the fetch produced
            payload.signals = [
                p for p in result.points if from_epoch <= p.timestamp <= until_epoch
            ]
            payload.events = sorted(
                (e for e in result.events if from_epoch <= e.start_epoch <= until_epoch),
                key=lambda e: e.start_epoch,
                reverse=True,
            )
            payload.error = result.error
            payload.status = derive_status(payload.signals, payload.events, now=now)
            payload.fetched_at = iso(dt.datetime.fromtimestamp(now, dt.timezone.utc))
            return payload

        return self._from_store(payload, entity_type, entity_code, from_epoch, until_epoch, now)

    def _from_store(
        self,
        payload: DashboardPayload,
        entity_type: str,
        entity_code: str,
        from_epoch: int,
        until_epoch: int,
        now: float,
    ) -> DashboardPayload:
        payload.signals = self.store.load_signal_points(
            entity_type, entity_code, from_epoch, until_epoch
        )
        payload.events = self.store.load_events(
            entity_type, entity_code, from_epoch, until_epoch
        )
        payload.status = derive_status(payload.signals, payload.events, now=now)
        latest = self.store.latest_signal_update(entity_type, entity_code)
        payload.fetched_at = iso(latest) if latest else None
        return payload

    # -----------------------------
    # Regions (stored, staleness gated)
    # -----------------------------

    async def read_region_signals(self, datasource: str) -> Dict[str, Any]:
        def render(regions: List[RegionSeries], latest: Optional[dt.datetime]) -> Dict[str, Any]:
            return {
                "datasource": datasource,
                "regions": [r.to_dict() for r in regions],
                "fetchedAt": iso(latest) if latest else None,
                "error": None,
            }

        return await self._gated_region_read(
            scope=f"signals:{datasource}",
            load=lambda: self.store.load_region_series(datasource),
            render=render,
            refresh=lambda now: self.pipeline.sync_regions(
                now=now, datasources=[datasource], scores=False
            ),
            missing_key="missingSignals",
        )

    async def read_region_outages(self) -> Dict[str, Any]:
        def render(scores: List[OutageScore], latest: Optional[dt.datetime]) -> Dict[str, Any]:
            return {
                "scores": [s.to_dict() for s in scores],
                "fetchedAt": iso(latest) if latest else None,
                "error": None,
            }

        return await self._gated_region_read(
            scope="outages",
            load=self.store.load_region_outages,
            render=render,
            refresh=lambda now: self.pipeline.sync_regions(now=now, datasources=[]),
            missing_key="missingScores",
        )

    async def _gated_region_read(
        self,
        scope: str,
        load: Callable[[], Tuple[list, Optional[dt.datetime]]],
        render: Callable[[list, Optional[dt.datetime]], Dict[str, Any]],
        refresh: Callable[[int], Awaitable[Dict[str, Any]]],
        missing_key: str,
    ) -> Dict[str, Any]:
        """Same four states as read(); a refresh succeeded if it advanced updated_at."""
        now = self._clock()
        items, latest = load()
        if not self.is_stale(latest, now):
            return render(items, latest)

        logger.info(
            "region_refresh_triggered",
            scope=scope,
            last_update=iso(latest) if latest else None,
        )
        summary = await refresh(int(now))
        fresh_items, fresh_latest = load()

        if fresh_latest is not None and (latest is None or fresh_latest > latest):
            body = render(fresh_items, fresh_latest)
            missing = summary.get(missing_key) or []
            if missing:
                body["error"] = f"No data for: {', '.join(missing)}"
            return body
        if latest is None:
            logger.warning("region_refresh_failed_no_history", scope=scope)
            return {
                **render([], None),
                "fetchedAt": _iso_epoch(int(now)),
                "error": NO_DATA_ERROR,
                "failed": True,
            }
        logger.warning("serving_stale", scope=scope)
        return {**render(items, latest), "error": STALE_WARNING, "stale": True}

    # -----------------------------
    # Live reads (TTL cached)
    # -----------------------------

    async def live_entity(
        self, entity_type: str, entity_code: str, hours: int = 24
    ) -> Dict[str, Any]:
        key = f"entity:{entity_type}:{entity_code}:{hours}"
        cached = self.cache.lookup(key)
        if cached.fresh:
            return cached.value

        now = int(self._clock())
        points, events = await self.pipeline.fetch_entity(
            entity_type, entity_code, hours_ago(hours, now=now), now
        )
        if not points:
            return self._live_fallback(
                key,
                cached,
                {"signals": [], "events": [], "status": ConnectivityStatus.NO_DATA.value},
            )

        events = sorted(events, key=lambda e: e.start_epoch, reverse=True)
        body = {
            "signals": [p.to_dict() for p in points],
            "events": [e.to_dict() for e in events],
            "status": derive_status(points, events, now=now).value,
            "fetchedAt": _iso_epoch(now),
            "error": None,
        }
        self.cache.set(key, body)
        return body

    async def live_region_signals(self, datasource: str, hours: int = 24) -> Dict[str, Any]:
        key = f"regions:{datasource}:{hours}"
        cached = self.cache.lookup(key)
        if cached.fresh:
            return cached.value

        now = int(self._clock())
        series = await self.pipeline.fetch_region_series(
            datasource, hours_ago(hours, now=now), now
        )
        missing = [s.region_name for s in series if not s.values]
        if series and len(missing) == len(series):
            return self._live_fallback(key, cached, {"datasource": datasource, "regions": []})

        body = {
            "datasource": datasource,
            "regions": [
                s.to_dict()
                for s in sorted(series, key=lambda s: _numeric_code(s.region_code))
            ],
            "fetchedAt": _iso_epoch(now),
            "error": f"No data for: {', '.join(missing)}" if missing else None,
        }
        self.cache.set(key, body)
        return body

    async def live_outage_scores(self, hours: int = 24) -> Dict[str, Any]:
        key = f"outages:{hours}"
        cached = self.cache.lookup(key)
        if cached.fresh:
            return cached.value

        now = int(self._clock())
        pairs = await self.pipeline.fetch_region_scores(hours_ago(hours, now=now), now)
        failed = [region.name for region, score in pairs if score is None]
        if pairs and len(failed) == len(pairs):
            return self._live_fallback(key, cached, {"scores": []})

        scores = sorted(
            (OutageScore(r.code, r.name, score or 0.0) for r, score in pairs),
            key=lambda s: s.score,
            reverse=True,
        )
        body = {
            "scores": [s.to_dict() for s in scores],
            "fetchedAt": _iso_epoch(now),
            "error": f"Unavailable: {', '.join(failed)}" if failed else None,
        }
        self.cache.set(key, body)
        return body

    def _live_fallback(self, key, cached, empty: Dict[str, Any]) -> Dict[str, Any]:
        logger.warning("live_refresh_failed", key=key, has_cached=cached.present)
        if cached.present:
            return {**cached.value, "error": STALE_WARNING, "stale": True}
        return {
            **empty,
            "fetchedAt": _iso_epoch(int(self._clock())),
            "error": NO_DATA_ERROR,
            "failed": True,
        }


def _iso_epoch(epoch: int) -> str:
    return iso(dt.datetime.fromtimestamp(epoch, dt.timezone.utc))


def _numeric_code(code: str) -> Tuple[int, Any]:
    return (0, int(code)) if code.isdigit() else (1, code)
