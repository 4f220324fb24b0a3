"""
Core DB models: the key-value table that holds the persisted roster and its backups.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text

from iep_tracker.core.db import Base


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StorageEntry(Base):
    """One key of the on-device store. value is the JSON document as text."""
    __tablename__ = "storage_entries"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)
