"""
Key-value backends for the local store.
All backends implement KeyValueStore; values are JSON documents stored as text.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from iep_tracker.core.db import Database
from iep_tracker.core.models import StorageEntry
from iep_tracker.storage.errors import StorageFailure

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract on-device store: string keys to string values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key. Raises StorageFailure when the write is rejected."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        pass

    @abstractmethod
    def size(self) -> int:
        """Total stored characters across all keys."""
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store for ephemeral sessions."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self.quota_bytes:
                raise StorageFailure(
                    f"Storage quota exceeded writing {key} ({used + len(value)} > {self.quota_bytes})"
                )
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def size(self) -> int:
        return sum(len(v) for v in self._data.values())


class SqlKeyValueStore(KeyValueStore):
    """Key-value rows in the storage_entries table, with an optional total-size quota."""

    def __init__(self, database: Database, quota_bytes: Optional[int] = None):
        self.database = database
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        try:
            with self.database.session_scope() as session:
                row = session.get(StorageEntry, key)
                return row.value if row else None
        except SQLAlchemyError as e:
            raise StorageFailure(f"Database read failed for {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            with self.database.session_scope() as session:
                if self.quota_bytes is not None:
                    used = session.execute(
                        select(func.coalesce(func.sum(func.length(StorageEntry.value)), 0))
                        .where(StorageEntry.key != key)
                    ).scalar_one()
                    if used + len(value) > self.quota_bytes:
                        raise StorageFailure(
                            f"Storage quota exceeded writing {key} ({used + len(value)} > {self.quota_bytes})"
                        )
                row = session.get(StorageEntry, key)
                if row:
                    row.value = value
                else:
                    session.add(StorageEntry(key=key, value=value))
        except SQLAlchemyError as e:
            logger.error(f"Database write failed for {key}: {e}")
            raise StorageFailure(f"Database write failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        with self.database.session_scope() as session:
            session.execute(delete(StorageEntry).where(StorageEntry.key == key))

    def keys(self, prefix: str = "") -> List[str]:
        with self.database.session_scope() as session:
            stmt = select(StorageEntry.key).order_by(StorageEntry.key)
            if prefix:
                stmt = stmt.where(StorageEntry.key.startswith(prefix, autoescape=True))
            return list(session.execute(stmt).scalars().all())

    def size(self) -> int:
        with self.database.session_scope() as session:
            return session.execute(
                select(func.coalesce(func.sum(func.length(StorageEntry.value)), 0))
            ).scalar_one()
