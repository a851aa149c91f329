# pipeline.py
from __future__ import annotations

import asyncio
import datetime as dt
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from concurrency import run_with_concurrency
from config_utils import Region, SyncSettings
from helpers import hours_ago, iso, utcnow
from ioda_client import IODAClient
from logging_utils import get_logger
from series import (
    DEFAULT_STEP_SECONDS,
    OutageEvent,
    RegionSeries,
    SignalPoint,
    group_by_timestamp,
    merge_by_anchor,
)
from status import OutageScore
from store import Store

logger = get_logger(__name__)


@dataclass
class ChunkResult:
    from_epoch: int
    until_epoch: int
    signal_rows: int = 0
    event_rows: int = 0
    error: Optional[str] = None
    # what was fetched, so callers can serve it when persisting failed
    points: List[SignalPoint] = field(default_factory=list)
    events: List[OutageEvent] = field(default_factory=list)

    @property
    def fetched_anything(self) -> bool:
        return bool(self.points or self.events)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.error is None,
            "signalRows": self.signal_rows,
            "eventRows": self.event_rows,
            "error": self.error,
        }


class IngestPipeline:
    """fetch -> merge -> reconcile -> upsert, for one entity or for all regions."""

    def __init__(
        self,
        client: IODAClient,
        store: Store,
        settings: SyncSettings,
        regions: Sequence[Region] = (),
    ):
        self.client = client
        self.store = store
        self.settings = settings
        self.regions = list(regions)

    async def sync_window(
        self,
        entity_type: str,
        entity_code: str,
        from_epoch: int,
        until_epoch: int,
    ) -> ChunkResult:
        result = ChunkResult(from_epoch=from_epoch, until_epoch=until_epoch)
        delay = float(self.settings.request_delay_seconds)

        # sequential, not concurrent: one logical client against one entity
        series = await self.client.fetch_signals_sequential(
            entity_type,
            entity_code,
            self.settings.datasources,
            from_epoch,
            until_epoch,
            delay=delay,
        )
        if delay > 0:
            await asyncio.sleep(delay)
        events = await self.client.fetch_events(
            entity_type, entity_code, from_epoch, until_epoch
        )

        result.points = group_by_timestamp(series)
        result.events = events

        errors: List[str] = []
        now = utcnow()
        try:
            result.signal_rows = self.store.upsert_signal_points(
                entity_type, entity_code, result.points, now=now
            )
        except SQLAlchemyError as exc:
            logger.error("signal_upsert_failed", entity_code=entity_code, error=str(exc))
            result.signal_rows = len(result.points)
            errors.append(f"signals: {exc}")
        try:
            result.event_rows = self.store.upsert_events(events, now=now)
        except SQLAlchemyError as exc:
            logger.error("event_upsert_failed", entity_code=entity_code, error=str(exc))
            result.event_rows = len(events)
            errors.append(f"events: {exc}")

        result.error = "; ".join(errors) if errors else None
        logger.info(
            "window_synced",
            entity_type=entity_type,
            entity_code=entity_code,
            datasources=len(series),
            signal_rows=result.signal_rows,
            event_rows=result.event_rows,
            error=result.error,
        )
        return result

    async def sync_latest(
        self,
        entity_type: Optional[str] = None,
        entity_code: Optional[str] = None,
        now: Optional[int] = None,
    ) -> ChunkResult:
        now = int(time.time()) if now is None else int(now)
        return await self.sync_window(
            entity_type or self.settings.default_entity_type,
            entity_code or self.settings.default_entity_code,
            hours_ago(self.settings.latest_window_hours, now=now),
            now,
        )

    async def fetch_region_series(
        self, datasource: str, from_epoch: int, until_epoch: int
    ) -> List[RegionSeries]:
        """All configured regions for one datasource, bounded by max_concurrency."""

        async def one(region: Region) -> RegionSeries:
            s = await self.client.fetch_signal(
                "region", region.code, datasource, from_epoch, until_epoch
            )
            if s is None:
                return RegionSeries(
                    region.code, region.name, datasource, from_epoch, DEFAULT_STEP_SECONDS, []
                )
            return RegionSeries(
                region.code,
                region.name,
                datasource,
                s.from_epoch,
                s.step_seconds,
                list(s.values),
            )

        results = await run_with_concurrency(
            self.regions, one, self.settings.max_concurrency
        )
        return [
            r
            if r is not None
            else RegionSeries(reg.code, reg.name, datasource, from_epoch, DEFAULT_STEP_SECONDS, [])
            for reg, r in zip(self.regions, results)
        ]

    async def fetch_region_scores(
        self, from_epoch: int, until_epoch: int
    ) -> List[Tuple[Region, Optional[float]]]:
        """(region, score) pairs; score is None where the upstream call failed."""

        async def one(region: Region) -> Optional[float]:
            return await self.client.fetch_outage_score(
                "region", region.code, from_epoch, until_epoch
            )

        scores = await run_with_concurrency(
            self.regions, one, self.settings.max_concurrency
        )
        return list(zip(self.regions, scores))

    async def sync_regions(
        self,
        now: Optional[int] = None,
        datasources: Optional[Sequence[str]] = None,
        scores: bool = True,
    ) -> Dict[str, Any]:
        """
        Fetch and store every configured region. Regions whose fetch failed
        are not written, so their previous rows (and updated_at) survive.
        """
        now = int(time.time()) if now is None else int(now)
        from_epoch = hours_ago(self.settings.latest_window_hours, now=now)
        if datasources is None:
            datasources = self.settings.datasources

        series: List[RegionSeries] = []
        for ds in datasources:
            series.extend(await self.fetch_region_series(ds, from_epoch, now))
        fetched_scores: List[OutageScore] = []
        missing_scores: List[str] = []
        if scores:
            for region, score in await self.fetch_region_scores(from_epoch, now):
                if score is None:
                    missing_scores.append(region.name)
                else:
                    fetched_scores.append(OutageScore(region.code, region.name, score))

        errors: List[str] = []
        signal_rows = outage_rows = 0
        stamp = dt.datetime.fromtimestamp(now, dt.timezone.utc)
        try:
            signal_rows = self.store.upsert_region_series(series, now=stamp)
        except SQLAlchemyError as exc:
            logger.error("region_signal_upsert_failed", error=str(exc))
            errors.append(str(exc))
        try:
            outage_rows = self.store.upsert_region_outages(fetched_scores, now=stamp)
        except SQLAlchemyError as exc:
            logger.error("region_outage_upsert_failed", error=str(exc))
            errors.append(str(exc))

        missing_signals = sorted({s.region_name for s in series if not s.values})
        logger.info(
            "regions_synced",
            regions=len(self.regions),
            signal_rows=signal_rows,
            outage_rows=outage_rows,
            missing_signals=len(missing_signals),
            missing_scores=len(missing_scores),
            errors=len(errors),
        )
        return {
            "ok": not errors,
            "signalRows": signal_rows,
            "outageRows": outage_rows,
            "missingSignals": missing_signals,
            "missingScores": missing_scores,
            "errors": errors,
            "syncedAt": iso(stamp),
        }

    async def fetch_entity(
        self,
        entity_type: str,
        entity_code: str,
        from_epoch: int,
        until_epoch: int,
    ) -> Tuple[List[SignalPoint], List[OutageEvent]]:
        """Live dashboard view: all datasources aligned on the longest series. Nothing is stored."""
        series = await self.client.fetch_signals(
            entity_type, entity_code, from_epoch, until_epoch
        )
        events = await self.client.fetch_events(
            entity_type, entity_code, from_epoch, until_epoch
        )
        return merge_by_anchor(series), events
