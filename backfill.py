# backfill.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from helpers import iso, utcnow
from logging_utils import get_logger
from pipeline import IngestPipeline

logger = get_logger(__name__)

WEEK_SECONDS = 7 * 24 * 3600


def chunk_range(
    from_epoch: int, until_epoch: int, chunk_seconds: int = WEEK_SECONDS
) -> List[Tuple[int, int]]:
    """Contiguous [from, until) windows; the last one is cut short at until."""
    if chunk_seconds <= 0:
        raise ValueError("chunk_seconds must be positive")
    chunks: List[Tuple[int, int]] = []
    cursor = int(from_epoch)
    while cursor < until_epoch:
        end = min(cursor + chunk_seconds, int(until_epoch))
        chunks.append((cursor, end))
        cursor = end
    return chunks


@dataclass
class BackfillSummary:
    chunks: int = 0
    total_signals: int = 0
    total_events: int = 0
    errors: List[str] = field(default_factory=list)
    completed_at: str = ""

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "chunks": self.chunks,
            "totalSignals": self.total_signals,
            "totalEvents": self.total_events,
            "errors": list(self.errors),
            "completedAt": self.completed_at,
        }


async def run_backfill(
    pipeline: IngestPipeline,
    entity_type: str,
    entity_code: str,
    from_epoch: int,
    until_epoch: int,
    chunk_seconds: int = WEEK_SECONDS,
    pause: float = 0.4,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BackfillSummary:
    """
    Best-effort historical catch-up. Chunks run one after another with a
    fixed pause after each, whether it succeeded or not; a failing chunk is
    recorded and the rest still run.
    """
    chunks = chunk_range(from_epoch, until_epoch, chunk_seconds)
    summary = BackfillSummary(chunks=len(chunks))
    logger.info(
        "backfill_started",
        entity_type=entity_type,
        entity_code=entity_code,
        chunks=len(chunks),
    )

    for start, end in chunks:
        try:
            result = await pipeline.sync_window(entity_type, entity_code, start, end)
        except Exception as exc:
            logger.exception("chunk_failed", chunk_from=start, chunk_until=end)
            summary.errors.append(f"[{start}–{end}] {exc}")
        else:
            summary.total_signals += result.signal_rows
            summary.total_events += result.event_rows
            if result.error:
                summary.errors.append(f"[{start}–{end}] {result.error}")
        await sleep(pause)

    summary.completed_at = iso(utcnow())
    logger.info(
        "backfill_finished",
        chunks=summary.chunks,
        total_signals=summary.total_signals,
        total_events=summary.total_events,
        errors=len(summary.errors),
    )
    return summary
