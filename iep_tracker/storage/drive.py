"""
Google Drive v3 client addressed with a caller-supplied access token.
Only the calls the remote mirror needs: query, create folder, multipart create/update,
download and delete.
"""
import io
import logging
from typing import Any, Dict, List, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from iep_tracker.storage.errors import RemoteErrorKind, RemoteUnavailable

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
JSON_MIME_TYPE = "application/json"

# Drive error reasons that mean "out of space" or "slow down" rather than bad credentials
_QUOTA_REASONS = frozenset(
    {"storageQuotaExceeded", "quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded", "dailyLimitExceeded"}
)


def quote_query_value(value: str) -> str:
    """Quote a string literal for a Drive files.list query."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _error_reasons(error: HttpError) -> List[str]:
    details = getattr(error, "error_details", None)
    if not isinstance(details, list):
        return []
    return [d.get("reason") for d in details if isinstance(d, dict) and d.get("reason")]


def _classify(error: HttpError) -> str:
    status = error.resp.status
    if status == 429 or set(_error_reasons(error)) & _QUOTA_REASONS:
        return RemoteErrorKind.QUOTA
    if status in (401, 403):
        return RemoteErrorKind.AUTH
    return RemoteErrorKind.HTTP


def _json_media(content: str) -> MediaIoBaseUpload:
    return MediaIoBaseUpload(io.BytesIO(content.encode("utf-8")), mimetype=JSON_MIME_TYPE, resumable=False)


class DriveClient:
    """One access token, one Drive service. The token is never written anywhere."""

    def __init__(
        self,
        access_token: str,
        timeout: float = 30,
        http: Optional[httplib2.Http] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        if http is None:
            http = google_auth_httplib2.AuthorizedHttp(
                Credentials(token=access_token), http=httplib2.Http(timeout=timeout)
            )
        self._service = build("drive", "v3", http=http, cache_discovery=False)

    def _execute(self, request: Any) -> Any:
        try:
            return request.execute()
        except HttpError as e:
            message = f"Google Drive API error: {e.resp.status} - {e}"
            self.logger.error(message)
            raise RemoteUnavailable(message, _classify(e), e.resp.status) from e
        except RefreshError as e:
            # A bare access token cannot be refreshed, so a rejected token surfaces here
            self.logger.error(f"Google Drive rejected the access token: {e}")
            raise RemoteUnavailable(f"Google Drive rejected the access token: {e}", RemoteErrorKind.AUTH, 401) from e
        except (TransportError, httplib2.HttpLib2Error, OSError) as e:
            self.logger.error(f"Network error calling Google Drive: {e}")
            raise RemoteUnavailable(f"Network error calling Google Drive: {e}", RemoteErrorKind.TRANSPORT) from e

    def list_files(self, query: str, fields: str = "files(id,name,modifiedTime)") -> List[Dict[str, Any]]:
        files_api = self._service.files()
        request = files_api.list(q=query, fields=f"nextPageToken, {fields}", spaces="drive", pageSize=1000)
        files: List[Dict[str, Any]] = []
        while request is not None:
            response = self._execute(request)
            files.extend(response.get("files", []))
            request = files_api.list_next(request, response)
        return files

    def create_folder(self, name: str) -> str:
        body = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        return self._execute(self._service.files().create(body=body, fields="id"))["id"]

    def create_file(self, name: str, parent_id: str, content: str) -> str:
        request = self._service.files().create(
            body={"name": name, "parents": [parent_id]},
            media_body=_json_media(content),
            fields="id",
        )
        return self._execute(request)["id"]

    def update_file(self, file_id: str, name: str, content: str) -> str:
        request = self._service.files().update(
            fileId=file_id,
            body={"name": name},
            media_body=_json_media(content),
            fields="id",
        )
        return self._execute(request)["id"]

    def download(self, file_id: str) -> str:
        data = self._execute(self._service.files().get_media(fileId=file_id))
        return data.decode("utf-8") if isinstance(data, bytes) else data

    def delete_file(self, file_id: str) -> None:
        self._execute(self._service.files().delete(fileId=file_id))
