from .errors import (
    BackupCorrupt,
    BackupNotFound,
    CompositeClearFailure,
    ImportValidationError,
    RemoteDataCorrupt,
    RemoteUnavailable,
    StorageError,
    StorageFailure,
)
from .facade import LoadResult, RemoteResult, SaveResult, StorageFacade
from .kv import KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from .local import LocalStore
from .remote import RemoteStore

__all__ = [
    "BackupCorrupt", "BackupNotFound", "CompositeClearFailure", "ImportValidationError",
    "RemoteDataCorrupt", "RemoteUnavailable", "StorageError", "StorageFailure",
    "LoadResult", "RemoteResult", "SaveResult", "StorageFacade",
    "KeyValueStore", "MemoryKeyValueStore", "SqlKeyValueStore", "LocalStore", "RemoteStore",
    "build_facade",
]


def build_facade(config_data: dict, database=None) -> StorageFacade:
    """Factory: wire the local store (SQL-backed when a database is given) and the Drive mirror from config."""
    from .drive import DriveClient

    storage_config = config_data.get("storage") or {}
    drive_config = config_data.get("google_drive") or {}
    quota = storage_config.get("quota_bytes")
    quota = int(quota) if quota else None

    kv = SqlKeyValueStore(database, quota_bytes=quota) if database is not None else MemoryKeyValueStore(quota)
    local = LocalStore(kv, max_backups=int(storage_config.get("max_backups", 7)))

    remote_factory = None
    if drive_config.get("enabled", False):
        timeout = float(drive_config.get("timeout", 30))
        folder_name = drive_config.get("folder_name") or ".iep-tracker-data"
        data_file_name = drive_config.get("data_file_name") or "students-data.json"

        def remote_factory(token: str) -> RemoteStore:
            return RemoteStore(DriveClient(token, timeout=timeout), folder_name, data_file_name)

    return StorageFacade(local, remote_factory, export_dir=storage_config.get("export_dir"))
