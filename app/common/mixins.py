"""
Common mixins for ledger models
"""
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, String


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OwnerMixin:
    """Mixin for records scoped to the identity subject that owns them"""

    owner_uid = Column(String(128), nullable=False, index=True)


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
