"""
Storage error kinds. Everything raised by the storage layer derives from StorageError.
"""
from typing import Optional


class StorageError(Exception):
    """Base class for local and remote storage errors."""


class StorageFailure(StorageError):
    """The local store rejected a write (quota exceeded or database error)."""


class BackupNotFound(StorageError):
    def __init__(self, key: str):
        super().__init__(f"Backup not found: {key}")
        self.key = key


class BackupCorrupt(StorageError):
    def __init__(self, key: str, reason: str = "invalid backup format"):
        super().__init__(f"Backup {key} is unreadable: {reason}")
        self.key = key


class RemoteErrorKind:
    """Why a remote call failed."""
    AUTH = "auth"
    QUOTA = "quota"
    HTTP = "http"
    TRANSPORT = "transport"


class RemoteUnavailable(StorageError):
    """Network, auth or HTTP failure talking to the cloud drive."""

    def __init__(self, message: str, kind: str = RemoteErrorKind.HTTP, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class RemoteDataCorrupt(StorageError):
    """The remote data file could not be parsed."""


class ImportValidationError(StorageError):
    """An import document is malformed. index names the first invalid student entry, if any."""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class CompositeClearFailure(StorageError):
    """Local data was cleared but clearing the remote folder failed."""

    def __init__(self, remote_error: Exception):
        super().__init__(
            f"Local data cleared, but failed to clear Google Drive data: {remote_error}"
        )
        self.local_cleared = True
        self.remote_error = remote_error
