"""
Local persistence: the whole roster under one key, plus one rolling backup per calendar day.
"""
import json
import logging
from collections import namedtuple
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from iep_tracker.core.dates import parse_timestamp, utc_now
from iep_tracker.core.roster import Student
from iep_tracker.storage.documents import (
    backup_document,
    dumps,
    local_document,
    students_from_document,
)
from iep_tracker.storage.errors import BackupCorrupt, BackupNotFound, StorageFailure
from iep_tracker.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "iep-tracker-students"
BACKUP_PREFIX = "iep-tracker-backup-"
DEFAULT_MAX_BACKUPS = 7

BackupInfo = namedtuple("BackupInfo", ["key", "date", "student_count"])

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _backup_sort_key(backup: BackupInfo) -> tuple:
    stamp = backup.date or _EPOCH
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp, backup.key


class LocalStore:
    """Roster persistence on an injected KeyValueStore."""

    def __init__(
        self,
        kv: KeyValueStore,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        now: Callable[[], datetime] = utc_now,
    ):
        self.kv = kv
        self.max_backups = max_backups
        self._now = now

    def save(self, students: Sequence[Student]) -> None:
        """Write the roster document. Raises StorageFailure if the store rejects it."""
        self.kv.set(STORAGE_KEY, dumps(local_document(students)))
        logger.info(f"Saved {len(students)} student(s) to local storage")

    def load(self) -> List[Student]:
        """Read the roster. Missing or malformed data yields an empty roster."""
        try:
            raw = self.kv.get(STORAGE_KEY)
        except StorageFailure as e:
            logger.error(f"Error reading local storage, treating as empty: {e}")
            return []
        if raw is None:
            logger.info("No saved data found, starting fresh")
            return []
        try:
            students = students_from_document(json.loads(raw))
        except ValueError as e:
            logger.warning(f"Invalid data format in local storage, treating as empty: {e}")
            return []
        logger.info(f"Loaded {len(students)} student(s) from local storage")
        return students

    def create_auto_backup(self, students: Sequence[Student]) -> Optional[str]:
        """Write today's snapshot (overwriting an earlier one from today) and prune old ones.

        Returns the backup key, or None if the backup could not be written.
        """
        now = self._now()
        key = f"{BACKUP_PREFIX}{now.date().isoformat()}"
        backup_date = now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        try:
            self.kv.set(key, dumps(backup_document(students, backup_date)))
        except StorageFailure as e:
            logger.warning(f"Failed to create auto-backup: {e}")
            return None
        self.prune_backups(self.max_backups)
        return key

    def _read_backup(self, key: str) -> Dict[str, Any]:
        raw = self.kv.get(key)
        if raw is None:
            raise BackupNotFound(key)
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise BackupCorrupt(key, str(e)) from e
        if not isinstance(data, dict):
            raise BackupCorrupt(key)
        return data

    def list_backups(self) -> List[BackupInfo]:
        """All readable snapshots, newest first."""
        backups = []
        for key in self.kv.keys(BACKUP_PREFIX):
            try:
                data = self._read_backup(key)
            except (BackupNotFound, BackupCorrupt) as e:
                logger.warning(f"Invalid backup data for key {key}: {e}")
                continue
            students = data.get("students")
            backups.append(
                BackupInfo(
                    key=key,
                    date=parse_timestamp(data.get("backupDate")),
                    student_count=len(students) if isinstance(students, list) else 0,
                )
            )
        return sorted(backups, key=_backup_sort_key, reverse=True)

    def restore_backup(self, key: str) -> List[Student]:
        data = self._read_backup(key)
        try:
            students = students_from_document(data)
        except ValueError as e:
            raise BackupCorrupt(key, str(e)) from e
        logger.info(f"Restored {len(students)} student(s) from backup {key}")
        return students

    def prune_backups(self, max_count: int = DEFAULT_MAX_BACKUPS) -> List[str]:
        """Delete all but the max_count most recent snapshots. Returns the deleted keys."""
        old = [b.key for b in self.list_backups()[max_count:]]
        for key in old:
            self.kv.delete(key)
        if old:
            logger.info(f"Cleaned {len(old)} old backup(s)")
        return old

    def clear(self) -> None:
        """Remove the roster and every backup, including unreadable ones."""
        self.kv.delete(STORAGE_KEY)
        for key in self.kv.keys(BACKUP_PREFIX):
            self.kv.delete(key)
        logger.info("All local data cleared")

    def info(self) -> Dict[str, Any]:
        raw = self.kv.get(STORAGE_KEY)
        last_saved = None
        if raw:
            try:
                last_saved = json.loads(raw).get("timestamp")
            except (ValueError, AttributeError):
                last_saved = None
        return {
            "size": len(raw) if raw else 0,
            "backup_count": len(self.list_backups()),
            "last_saved": last_saved,
        }
