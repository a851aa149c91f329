import datetime as dt
import os
import time
from typing import Optional

from models import Base
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url


def make_engine(db_url: str, echo: bool = False):
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        folder = os.path.dirname(url.database)
        if folder:
            os.makedirs(folder, exist_ok=True)
    engine = create_engine(db_url, echo=echo, future=True)
    Base.metadata.create_all(engine)
    return engine


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(ts: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    if ts.tzinfo is None:
        return ts.replace(tzinfo=dt.timezone.utc)
    return ts.astimezone(dt.timezone.utc)


def now_epoch() -> int:
    return int(time.time())


def hours_ago(hours: float, now: Optional[int] = None) -> int:
    return int((now if now is not None else now_epoch()) - hours * 3600)


def iso(ts: dt.datetime) -> str:
    return as_utc(ts).isoformat(timespec="seconds")
