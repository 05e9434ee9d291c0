"""
DocLedger Database Base — SQLAlchemy declarative base and shared mixins.

Provides:
- Base: SQLAlchemy declarative base for all DocLedger tables
- TimestampMixin: created_at, modified_at
- utcnow(): the single clock used for every persisted timestamp
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all DocLedger models."""
    pass


class TimestampMixin:
    """Adds created_at, modified_at columns."""
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    modified_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
