"""
Storage facade: local store as the durability guarantee, remote mirror as best effort.

Each operation runs the local phase first and the remote phase second; outcomes of both
phases are returned to the caller instead of a single boolean.
"""
import logging
from collections import namedtuple
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from iep_tracker.core.dates import utc_now
from iep_tracker.core.roster import Student, copy_students
from iep_tracker.storage.documents import dumps, export_document, parse_import
from iep_tracker.storage.errors import CompositeClearFailure, ImportValidationError, StorageError
from iep_tracker.storage.local import BackupInfo, LocalStore
from iep_tracker.storage.remote import RemoteStore

logger = logging.getLogger(__name__)

LocalResult = namedtuple("LocalResult", ["ok", "backup_key"])
RemoteResult = namedtuple("RemoteResult", ["attempted", "ok", "error"])
SaveResult = namedtuple("SaveResult", ["local", "remote"])
LoadResult = namedtuple("LoadResult", ["students", "source", "remote"])
ExportResult = namedtuple("ExportResult", ["path", "remote"])

NOT_ATTEMPTED = RemoteResult(attempted=False, ok=False, error=None)

RemoteFactory = Callable[[str], RemoteStore]


class LoadSource:
    REMOTE = "remote"
    LOCAL = "local"


class StorageFacade:
    """Coordinates LocalStore and the per-credential RemoteStore built by remote_factory."""

    def __init__(
        self,
        local: LocalStore,
        remote_factory: Optional[RemoteFactory] = None,
        export_dir: Optional[Union[str, Path]] = None,
    ):
        self.local = local
        self.remote_factory = remote_factory
        self.export_dir = Path(export_dir).expanduser() if export_dir else Path.cwd()

    def _remote(self, credential: Optional[str]) -> Optional[RemoteStore]:
        if not credential or self.remote_factory is None:
            return None
        return self.remote_factory(credential)

    def load(self, credential: Optional[str] = None) -> LoadResult:
        """Remote first when signed in; an empty or failed remote load falls back to local."""
        remote_result = NOT_ATTEMPTED
        remote = self._remote(credential)
        if remote is not None:
            try:
                students = remote.load()
                remote_result = RemoteResult(attempted=True, ok=True, error=None)
                if students:
                    try:
                        self.local.save(students)
                    except StorageError as e:
                        logger.warning(f"Loaded from Google Drive but could not refresh local copy: {e}")
                    return LoadResult(students, LoadSource.REMOTE, remote_result)
                logger.info("Google Drive has no students, falling back to local storage")
            except StorageError as e:
                logger.warning(f"Failed to load from Google Drive, falling back to local storage: {e}")
                remote_result = RemoteResult(attempted=True, ok=False, error=e)
        return LoadResult(self.local.load(), LoadSource.LOCAL, remote_result)

    def save(self, students: Sequence[Student], credential: Optional[str] = None) -> SaveResult:
        """Local save and auto-backup, then the remote mirror.

        A local failure raises StorageFailure. A remote failure is logged and reported in the result.
        """
        students = copy_students(students)
        self.local.save(students)
        backup_key = self.local.create_auto_backup(students)
        local_result = LocalResult(ok=True, backup_key=backup_key)

        remote = self._remote(credential)
        if remote is None:
            return SaveResult(local_result, NOT_ATTEMPTED)
        try:
            remote.save(students)
        except StorageError as e:
            logger.warning(f"Failed to save to Google Drive, but local save succeeded: {e}")
            return SaveResult(local_result, RemoteResult(attempted=True, ok=False, error=e))
        logger.info("Data also saved to Google Drive")
        return SaveResult(local_result, RemoteResult(attempted=True, ok=True, error=None))

    def export(
        self,
        students: Sequence[Student],
        credential: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> ExportResult:
        """Write an export file to export_dir; also export to Google Drive when signed in."""
        name = filename or f"iep-export-{utc_now().date().isoformat()}.json"
        self.export_dir.mkdir(parents=True, exist_ok=True)
        path = self.export_dir / name
        path.write_text(dumps(export_document(students), pretty=True), encoding="utf-8")
        logger.info(f"Data exported to {path}")

        remote = self._remote(credential)
        if remote is None:
            return ExportResult(path, NOT_ATTEMPTED)
        try:
            remote.export_snapshot(students, filename)
        except StorageError as e:
            logger.warning(f"Failed to export to Google Drive: {e}")
            return ExportResult(path, RemoteResult(attempted=True, ok=False, error=e))
        return ExportResult(path, RemoteResult(attempted=True, ok=True, error=None))

    def import_students(self, source: Union[str, Path, bytes, Dict[str, Any], List[Any]]) -> List[Student]:
        """Parse an import document from a file path, JSON text or already-parsed data."""
        if isinstance(source, Path) or (isinstance(source, str) and not source.lstrip().startswith(("{", "["))):
            try:
                source = Path(source).expanduser().read_text(encoding="utf-8")
            except OSError as e:
                raise ImportValidationError(f"Failed to read import file: {e}") from e
        students = parse_import(source)
        logger.info(f"Successfully validated {len(students)} student(s) from import")
        return students

    def clear_all(self, credential: Optional[str] = None) -> RemoteResult:
        """Delete local data and backups, then the remote folder's files.

        Raises CompositeClearFailure when local succeeded but remote did not.
        """
        self.local.clear()
        remote = self._remote(credential)
        if remote is None:
            return NOT_ATTEMPTED
        try:
            remote.delete_all()
        except StorageError as e:
            logger.error(f"Failed to clear Google Drive data: {e}")
            raise CompositeClearFailure(e) from e
        return RemoteResult(attempted=True, ok=True, error=None)

    def list_backups(self) -> List[BackupInfo]:
        return self.local.list_backups()

    def restore_backup(self, key: str) -> List[Student]:
        return self.local.restore_backup(key)

    def create_remote_backup(self, credential: str) -> str:
        """Snapshot the current remote roster into a dated file. Raises on any failure."""
        remote = self._remote(credential)
        if remote is None:
            raise ValueError("A Google Drive credential is required for a remote backup")
        file_id = remote.create_backup()
        logger.info("Google Drive backup created")
        return file_id

    def storage_info(self, credential: Optional[str] = None) -> Dict[str, Any]:
        info = self.local.info()
        info["google_drive"] = None
        remote = self._remote(credential)
        if remote is not None:
            try:
                info["google_drive"] = remote.folder_info()._asdict()
            except StorageError as e:
                logger.warning(f"Failed to get Google Drive info: {e}")
        return info

