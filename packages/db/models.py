"""
SQLAlchemy ORM models for RxTriage result persistence.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone as dt_timezone

from sqlalchemy import Boolean, Column, Date, DateTime, Float, Index, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase


def _uuid():
    return uuid.uuid4().hex


def utcnow():
    return datetime.now(dt_timezone.utc)


class Base(DeclarativeBase):
    pass


class AdherenceResult(Base):
    """
    One stored observation. Rows for a (patient_id, scope, scope_code) key are
    never updated in place except to retire them; ``version`` increases by one
    per write and at most one row per key has ``is_current`` set.
    """
    __tablename__ = "adherence_results"
    __table_args__ = (
        UniqueConstraint("patient_id", "scope", "scope_code", "version", name="uq_adherence_result_version"),
        Index("ix_adherence_results_current", "patient_id", "is_current"),
        Index("ix_adherence_results_queue", "is_current", "scope", "urgent", "priority_score"),
    )

    id = Column(String(120), primary_key=True, default=_uuid)
    patient_id = Column(String(120), nullable=False)
    scope = Column(String(20), nullable=False)  # measure | medication
    scope_code = Column(String(64), nullable=False)  # measure code or RxNorm code
    measure = Column(String(8), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    is_current = Column(Boolean, nullable=False, default=True)

    as_of = Column(Date, nullable=False)
    measurement_year = Column(Integer, nullable=False)
    status = Column(String(24), nullable=False, default="ok")  # ok | insufficient_data
    pdc = Column(Float, nullable=True)
    priority_score = Column(Integer, nullable=True)
    fragility_tier = Column(String(32), nullable=True)
    queue = Column(String(16), nullable=True)
    urgent = Column(Boolean, nullable=False, default=False)
    payload_json = Column(JSON, nullable=False)
    config_sha256 = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    superseded_at = Column(DateTime, nullable=True)
