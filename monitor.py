# monitor.py
from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional

from backfill import run_backfill
from config_utils import Settings, load_settings
from helpers import iso, now_epoch, utcnow
from ioda_client import IODAClient
from logging_utils import configure_logging
from pipeline import IngestPipeline
from store import Store


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="IODA connectivity ingestion")
    parser.add_argument("--config", default="config.yml")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="fetch the latest window for one entity")
    sync.add_argument("--entity-type")
    sync.add_argument("--entity-code")

    backfill = sub.add_parser("backfill", help="chunked historical catch-up")
    backfill.add_argument("--entity-type")
    backfill.add_argument("--entity-code")
    backfill.add_argument("--from", dest="from_epoch", type=int)
    backfill.add_argument("--until", dest="until_epoch", type=int)

    sub.add_parser("regions", help="fetch every configured region")
    return parser


async def run(settings: Settings, args: argparse.Namespace) -> Dict[str, Any]:
    store = Store(db_url=settings.db_url)
    client = IODAClient(settings.base_url, timeout=settings.request_timeout)
    pipeline = IngestPipeline(client, store, settings.sync, settings.regions)
    try:
        if args.command == "sync":
            result = await pipeline.sync_latest(args.entity_type, args.entity_code)
            return {**result.to_dict(), "syncedAt": iso(utcnow())}

        if args.command == "backfill":
            summary = await run_backfill(
                pipeline,
                args.entity_type or settings.sync.default_entity_type,
                args.entity_code or settings.sync.default_entity_code,
                args.from_epoch if args.from_epoch is not None else settings.sync.backfill_start,
                args.until_epoch if args.until_epoch is not None else now_epoch(),
                chunk_seconds=settings.sync.backfill_chunk_seconds,
                pause=settings.sync.backfill_pause_seconds,
            )
            return summary.to_dict()

        return await pipeline.sync_regions()
    finally:
        await client.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(settings.log_level, json_format=settings.log_json)

    summary = asyncio.run(run(settings, args))
    print(json.dumps(summary, indent=2))
    return 0 if summary.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
