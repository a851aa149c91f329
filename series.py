# series.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

# Upstream datasource id -> logical signal column.
# "ucsd-nt" was renamed "merit-nt" upstream; both are the same telescope signal.
DATASOURCE_ALIASES: Dict[str, str] = {
    "bgp": "bgp",
    "ping-slash24": "probing",
    "ucsd-nt": "telescope",
    "merit-nt": "telescope",
}

SIGNAL_FIELDS: Tuple[str, ...] = ("bgp", "probing", "telescope")
PRIMARY_FIELD = "bgp"
DEFAULT_STEP_SECONDS = 300


def canonical_field(datasource: str) -> Optional[str]:
    return DATASOURCE_ALIASES.get(datasource)


@dataclass(frozen=True)
class SignalSeries:
    entity_type: str
    entity_code: str
    datasource: str
    from_epoch: int
    step_seconds: int
    values: Tuple[Optional[float], ...]

    @property
    def field(self) -> Optional[str]:
        return canonical_field(self.datasource)

    def timestamp_at(self, i: int) -> int:
        return self.from_epoch + i * self.step_seconds

    def value_at(self, ts: int) -> Optional[float]:
        """Nearest-index lookup; out-of-range -> None."""
        if self.step_seconds <= 0 or not self.values:
            return None
        # half-up, not banker's rounding
        idx = math.floor((ts - self.from_epoch) / self.step_seconds + 0.5)
        if idx < 0 or idx >= len(self.values):
            return None
        return self.values[idx]

    @classmethod
    def from_payload(
        cls,
        raw: Dict[str, Any],
        entity_type: str,
        entity_code: str,
        default_from: int,
    ) -> Optional["SignalSeries"]:
        """Decode one upstream series dict; None if it is not a usable series."""
        datasource = raw.get("datasource")
        if not isinstance(datasource, str) or canonical_field(datasource) is None:
            return None
        values = raw.get("values")
        if not isinstance(values, list):
            return None
        step = raw.get("step") or DEFAULT_STEP_SECONDS
        start = raw.get("from")
        if start is None:
            start = default_from
        try:
            return cls(
                entity_type=str(raw.get("entityType") or entity_type),
                entity_code=str(raw.get("entityCode") or entity_code),
                datasource=datasource,
                from_epoch=int(start),
                step_seconds=int(step),
                values=tuple(_coerce_sample(v) for v in values),
            )
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class OutageEvent:
    entity_type: str
    entity_code: str
    datasource: str
    start_epoch: int
    duration_seconds: int
    score: float

    @classmethod
    def from_payload(
        cls, raw: Dict[str, Any], entity_type: str, entity_code: str
    ) -> Optional["OutageEvent"]:
        try:
            return cls(
                entity_type=entity_type,
                entity_code=entity_code,
                datasource=str(raw["datasource"]),
                start_epoch=int(raw["start"]),
                duration_seconds=int(raw.get("duration") or 0),
                score=float(raw.get("score") or 0.0),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "datasource": self.datasource,
            "start": self.start_epoch,
            "duration": self.duration_seconds,
            "score": self.score,
        }


@dataclass
class SignalPoint:
    """One unified per-timestamp row across the three logical signals."""

    timestamp: int
    bgp: Optional[float] = None
    probing: Optional[float] = None
    telescope: Optional[float] = None

    def get(self, name: str) -> Optional[float]:
        return getattr(self, name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "bgp": self.bgp,
            "probing": self.probing,
            "telescope": self.telescope,
        }


@dataclass
class RegionSeries:
    region_code: str
    region_name: str
    datasource: str
    from_epoch: int
    step_seconds: int
    values: List[Optional[float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regionCode": self.region_code,
            "regionName": self.region_name,
            "datasource": self.datasource,
            "from": self.from_epoch,
            "step": self.step_seconds,
            "values": list(self.values),
        }


def _coerce_sample(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    return float(v)


def _by_field(series: Iterable[SignalSeries]) -> Dict[str, SignalSeries]:
    # later series win when two upstream ids alias the same field
    out: Dict[str, SignalSeries] = {}
    for s in series:
        name = s.field
        if name is not None:
            out[name] = s
    return out


def merge_by_anchor(series: Sequence[SignalSeries]) -> List[SignalPoint]:
    """
    Align all datasources onto the time axis of the longest series.

    Other series are resampled by nearest index, so points may be None
    where a datasource has a different range or step.
    """
    by_field = _by_field(series)
    if not by_field:
        return []
    # ties go to the earlier field in SIGNAL_FIELDS
    anchor = max(
        (by_field[f] for f in SIGNAL_FIELDS if f in by_field),
        key=lambda s: len(s.values),
    )

    points: List[SignalPoint] = []
    for i in range(len(anchor.values)):
        ts = anchor.timestamp_at(i)
        point = SignalPoint(timestamp=ts)
        for name, s in by_field.items():
            setattr(point, name, s.value_at(ts))
        points.append(point)
    return points


def group_by_timestamp(series: Sequence[SignalSeries]) -> List[SignalPoint]:
    """
    Ingest-path merge: one row per raw timestamp, no resampling.

    Null samples are skipped so they never shadow a value another series
    (or a later alias of the same one) provides for that timestamp.
    """
    rows: Dict[int, SignalPoint] = {}
    for s in series:
        name = s.field
        if name is None:
            continue
        for i, value in enumerate(s.values):
            if value is None:
                continue
            ts = s.timestamp_at(i)
            point = rows.get(ts)
            if point is None:
                point = rows[ts] = SignalPoint(timestamp=ts)
            setattr(point, name, value)
    return [rows[ts] for ts in sorted(rows)]
