# status.py
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

import numpy as np

from series import PRIMARY_FIELD, OutageEvent, SignalPoint

# recent-event window and score cutoffs used by derive_status
RECENT_EVENT_SECONDS = 2 * 3600
EVENT_OUTAGE_SCORE = 500
EVENT_DEGRADED_SCORE = 100

# signal-drop heuristic
DROP_WINDOW = 24
DROP_MIN_SAMPLES = 4
DROP_OUTAGE_RATIO = 0.5
DROP_DEGRADED_RATIO = 0.8


class Severity(str, Enum):
    NORMAL = "normal"
    LOW = "low"
    DEGRADED = "degraded"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_ORDER = (
    Severity.NORMAL,
    Severity.LOW,
    Severity.DEGRADED,
    Severity.HIGH,
    Severity.CRITICAL,
)


class ConnectivityStatus(str, Enum):
    NORMAL = "normal"
    DEGRADED = "degraded"
    OUTAGE = "outage"
    NO_DATA = "no-data"


def classify_severity(score: float) -> Severity:
    """
    Thresholds calibrated against observed IODA regional scores
    (hundreds of thousands for a full state blackout).
    """
    if score is None or math.isnan(score) or score <= 0:
        return Severity.NORMAL
    if score < 1000:
        return Severity.LOW
    if score < 50000:
        return Severity.DEGRADED
    if score < 200000:
        return Severity.HIGH
    return Severity.CRITICAL


@dataclass
class OutageScore:
    region_code: str
    region_name: str
    score: float

    @property
    def severity(self) -> Severity:
        return classify_severity(self.score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regionCode": self.region_code,
            "regionName": self.region_name,
            "score": self.score,
            "severity": self.severity.value,
        }


def derive_status(
    signals: Sequence[SignalPoint],
    events: Sequence[OutageEvent],
    now: Optional[float] = None,
) -> ConnectivityStatus:
    """
    First match wins:
      1. no signal points                      -> no-data
      2. event in the last 2h, score >= 500    -> outage
         event in the last 2h, score >= 100    -> degraded
      3. latest bgp < 0.5 * median(last 24)    -> outage
         latest bgp < 0.8 * median(last 24)    -> degraded
      4.                                       -> normal
    """
    if not signals:
        return ConnectivityStatus.NO_DATA

    now = time.time() if now is None else now
    cutoff = now - RECENT_EVENT_SECONDS
    recent = [e for e in events if e.start_epoch >= cutoff]
    if any(e.score >= EVENT_OUTAGE_SCORE for e in recent):
        return ConnectivityStatus.OUTAGE
    if any(e.score >= EVENT_DEGRADED_SCORE for e in recent):
        return ConnectivityStatus.DEGRADED

    window = [p.get(PRIMARY_FIELD) for p in signals[-DROP_WINDOW:]]
    arr = np.asarray([v for v in window if v is not None], dtype=float)
    if arr.size >= DROP_MIN_SAMPLES:
        # upper median, so an even window never averages two samples
        median = float(np.sort(arr)[arr.size // 2])
        latest = float(arr[-1])
        if latest < median * DROP_OUTAGE_RATIO:
            return ConnectivityStatus.OUTAGE
        if latest < median * DROP_DEGRADED_RATIO:
            return ConnectivityStatus.DEGRADED

    return ConnectivityStatus.NORMAL
