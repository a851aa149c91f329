# ioda_client.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import httpx

from logging_utils import get_logger
from series import OutageEvent, SignalSeries, canonical_field

logger = get_logger(__name__)


class UpstreamError(Exception):
    """Raised internally for unusable upstream responses; never escapes the client."""


class IODAClient:
    """
    Async client for the IODA v2 API.

    Every public fetch maps transport errors, non-2xx statuses, HTML error
    pages and malformed JSON to an empty (or zero) result.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers={"Accept": "application/json"}
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            r = await self._client.get(url, params=params, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{type(exc).__name__}: {exc}") from exc
        if not r.is_success:
            raise UpstreamError(f"HTTP {r.status_code}")
        text = r.text.lstrip()
        if not text:
            raise UpstreamError("empty body")
        # upstream serves HTML error pages with a 200 now and then
        if text.startswith("<"):
            raise UpstreamError("HTML body instead of JSON")
        try:
            return r.json()
        except ValueError as exc:
            raise UpstreamError(f"invalid JSON: {exc}") from exc

    @staticmethod
    def _data(payload: Any) -> Any:
        if not isinstance(payload, dict):
            raise UpstreamError("unexpected envelope")
        return payload.get("data")

    async def fetch_signals(
        self,
        entity_type: str,
        entity_code: str,
        from_epoch: int,
        until_epoch: int,
        datasource: Optional[str] = None,
    ) -> List[SignalSeries]:
        params: Dict[str, Any] = {"from": from_epoch, "until": until_epoch}
        if datasource:
            params["datasource"] = datasource
        try:
            data = self._data(
                await self._get_json(
                    f"signals/raw/{entity_type}/{entity_code}", params
                )
            )
        except UpstreamError as exc:
            logger.warning(
                "fetch_signals_failed",
                entity_type=entity_type,
                entity_code=entity_code,
                datasource=datasource,
                error=str(exc),
            )
            return []
        if not isinstance(data, list):
            return []

        # envelope: {"data": [[series, series, ...]]}
        out: List[SignalSeries] = []
        for group in data:
            for raw in group if isinstance(group, list) else [group]:
                if not isinstance(raw, dict):
                    continue
                s = SignalSeries.from_payload(raw, entity_type, entity_code, from_epoch)
                if s is not None:
                    out.append(s)
        return out

    async def fetch_signal(
        self,
        entity_type: str,
        entity_code: str,
        datasource: str,
        from_epoch: int,
        until_epoch: int,
    ) -> Optional[SignalSeries]:
        """The series for one datasource, matched through the alias table."""
        wanted = canonical_field(datasource)
        series = await self.fetch_signals(
            entity_type, entity_code, from_epoch, until_epoch, datasource=datasource
        )
        match = None
        for s in series:
            if s.field == wanted:
                match = s
        return match

    async def fetch_signals_sequential(
        self,
        entity_type: str,
        entity_code: str,
        datasources: Sequence[str],
        from_epoch: int,
        until_epoch: int,
        delay: float = 1.0,
    ) -> List[SignalSeries]:
        """One call per datasource, spaced by ``delay`` to stay under rate limits."""
        out: List[SignalSeries] = []
        for i, ds in enumerate(datasources):
            if i and delay > 0:
                await asyncio.sleep(delay)
            s = await self.fetch_signal(
                entity_type, entity_code, ds, from_epoch, until_epoch
            )
            if s is not None:
                out.append(s)
        return out

    async def fetch_events(
        self,
        entity_type: str,
        entity_code: str,
        from_epoch: int,
        until_epoch: int,
    ) -> List[OutageEvent]:
        params = {
            "entityType": entity_type,
            "entityCode": entity_code,
            "from": from_epoch,
            "until": until_epoch,
        }
        try:
            data = self._data(await self._get_json("outages/events", params))
        except UpstreamError as exc:
            logger.warning(
                "fetch_events_failed",
                entity_type=entity_type,
                entity_code=entity_code,
                error=str(exc),
            )
            return []
        if not isinstance(data, list):
            return []

        out: List[OutageEvent] = []
        for raw in data:
            if not isinstance(raw, dict):
                continue
            ev = OutageEvent.from_payload(raw, entity_type, entity_code)
            if ev is not None:
                out.append(ev)
        return out

    async def fetch_outage_score(
        self,
        entity_type: str,
        entity_code: str,
        from_epoch: int,
        until_epoch: int,
    ) -> Optional[float]:
        """
        Overall outage score from /outages/summary.

        None when the upstream call failed; 0.0 when it answered but has no
        outage entry for the entity.
        """
        params = {
            "entityType": entity_type,
            "entityCode": entity_code,
            "from": from_epoch,
            "until": until_epoch,
        }
        try:
            data = self._data(await self._get_json("outages/summary", params))
        except UpstreamError as exc:
            logger.warning(
                "fetch_outage_score_failed",
                entity_type=entity_type,
                entity_code=entity_code,
                error=str(exc),
            )
            return None
        if not isinstance(data, list):
            return None
        if not data or not isinstance(data[0], dict):
            return 0.0
        scores = data[0].get("scores")
        if not isinstance(scores, dict):
            return 0.0
        try:
            return float(scores.get("overall") or 0.0)
        except (TypeError, ValueError):
            return 0.0
