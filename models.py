# models.py
from __future__ import annotations

import datetime as dt
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Float,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SignalRecord(Base):
    __tablename__ = "ioda_signals"
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_code: Mapped[str] = mapped_column(String, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    bgp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    probing: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    telescope: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    __table_args__ = (
        PrimaryKeyConstraint(
            "entity_type", "entity_code", "timestamp", name="pk_ioda_signals"
        ),
    )


class EventRecord(Base):
    __tablename__ = "ioda_events"
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_code: Mapped[str] = mapped_column(String, nullable=False)
    datasource: Mapped[str] = mapped_column(String, nullable=False)
    start: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        PrimaryKeyConstraint(
            "entity_type", "entity_code", "datasource", "start", name="pk_ioda_events"
        ),
        Index("idx_ioda_events_lookup", "entity_type", "entity_code", "start"),
    )


class RegionSignalRecord(Base):
    __tablename__ = "ioda_region_signals"
    region_code: Mapped[str] = mapped_column(String, nullable=False)
    datasource: Mapped[str] = mapped_column(String, nullable=False)
    region_name: Mapped[str] = mapped_column(String, nullable=False)
    from_epoch: Mapped[int] = mapped_column(BigInteger, nullable=False)
    step_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    values: Mapped[List[Optional[float]]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        PrimaryKeyConstraint("region_code", "datasource", name="pk_ioda_region_signals"),
    )


class RegionOutageRecord(Base):
    __tablename__ = "ioda_region_outages"
    region_code: Mapped[str] = mapped_column(String, primary_key=True)
    region_name: Mapped[str] = mapped_column(String, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
