# config_utils.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

_ENV_PATTERN = re.compile(r"^\$\{([A-Z0-9_]+)\}$")
load_dotenv()


def expand_env_vars(obj: Any) -> Any:
    """
    Recursively replace values like "${VAR_NAME}" with os.environ["VAR_NAME"] if present.
    Leaves value unchanged if env var is missing.
    """
    if isinstance(obj, dict):
        return {k: expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [expand_env_vars(v) for v in obj]
    if isinstance(obj, str):
        m = _ENV_PATTERN.match(obj.strip())
        if m:
            return os.getenv(m.group(1), obj)
        return obj
    return obj


def load_config(path: str = "config.yml") -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return expand_env_vars(yaml.safe_load(f))


@dataclass
class Region:
    code: str
    name: str


@dataclass
class SyncSettings:
    default_entity_type: str = "country"
    default_entity_code: str = "VE"
    latest_window_hours: int = 25
    refresh_interval_hours: float = 24
    max_concurrency: int = 5
    request_delay_seconds: float = 1.0
    backfill_start: int = 1767225600
    backfill_chunk_days: int = 7
    backfill_pause_seconds: float = 0.4
    live_cache_ttl_seconds: float = 300
    datasources: List[str] = field(
        default_factory=lambda: ["bgp", "ping-slash24", "merit-nt"]
    )

    @property
    def refresh_interval_seconds(self) -> float:
        return float(self.refresh_interval_hours) * 3600

    @property
    def backfill_chunk_seconds(self) -> int:
        return int(self.backfill_chunk_days) * 24 * 3600


@dataclass
class Settings:
    db_url: str
    base_url: str
    request_timeout: float = 30
    sync_secret: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = True
    sync: SyncSettings = field(default_factory=SyncSettings)
    regions: List[Region] = field(default_factory=list)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "Settings":
        app = cfg["app"]
        secret = app.get("sync_secret")
        # an unexpanded placeholder means the env var is not set
        if not secret or _ENV_PATTERN.match(str(secret).strip()):
            secret = None
        return cls(
            db_url=app["db_url"],
            base_url=app["base_url"],
            request_timeout=float(app.get("request_timeout", 30)),
            sync_secret=secret,
            log_level=str(app.get("log_level", "INFO")),
            log_json=bool(app.get("log_json", True)),
            sync=SyncSettings(**(cfg.get("sync") or {})),
            regions=[
                Region(code=str(r["code"]), name=r["name"])
                for r in cfg.get("regions") or []
            ],
        )


def load_settings(path: str = "config.yml") -> Settings:
    return Settings.from_config(load_config(path))
