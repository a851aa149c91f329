# reconcile.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from series import SIGNAL_FIELDS, SignalPoint


def reconcile(
    fresh: Sequence[SignalPoint], previous: Iterable[SignalPoint]
) -> List[SignalPoint]:
    """
    Merge freshly fetched points over stored ones, field by field:
    fresh ?? previous ?? None.

    Returns one point per fresh timestamp. A datasource that failed this
    cycle (None) keeps whatever was stored; stored timestamps that were not
    fetched are not returned and so not rewritten.
    """
    prev_by_ts: Dict[int, SignalPoint] = {p.timestamp: p for p in previous}
    out: List[SignalPoint] = []
    for point in fresh:
        old = prev_by_ts.get(point.timestamp)
        merged = SignalPoint(timestamp=point.timestamp)
        for name in SIGNAL_FIELDS:
            value = point.get(name)
            if value is None and old is not None:
                value = old.get(name)
            setattr(merged, name, value)
        out.append(merged)
    return out


def reconcile_values(
    fresh: Sequence[Optional[float]], previous: Optional[Sequence[Optional[float]]]
) -> List[Optional[float]]:
    """Whole-array variant for region series: an empty fetch keeps the stored array."""
    if not fresh and previous:
        return list(previous)
    return list(fresh)
