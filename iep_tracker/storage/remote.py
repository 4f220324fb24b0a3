"""
Remote mirror of the roster in a single well-known Google Drive folder.
Last writer wins: save replaces the data file's content, nothing is merged.
"""
import json
import logging
from collections import namedtuple
from typing import List, Optional, Sequence

from iep_tracker.core.dates import utc_now
from iep_tracker.core.roster import Student
from iep_tracker.storage.documents import dumps, export_document, remote_document, students_from_document
from iep_tracker.storage.drive import FOLDER_MIME_TYPE, DriveClient, quote_query_value
from iep_tracker.storage.errors import RemoteDataCorrupt

DEFAULT_FOLDER_NAME = ".iep-tracker-data"
DEFAULT_DATA_FILE_NAME = "students-data.json"

FolderInfo = namedtuple("FolderInfo", ["folder_id", "file_count", "last_modified"])


class RemoteStore:
    """Mirror operations on top of a DriveClient. Every call may raise RemoteUnavailable."""

    def __init__(
        self,
        client: DriveClient,
        folder_name: str = DEFAULT_FOLDER_NAME,
        data_file_name: str = DEFAULT_DATA_FILE_NAME,
    ):
        self.client = client
        self.folder_name = folder_name
        self.data_file_name = data_file_name
        self.logger = logging.getLogger(self.__class__.__name__)

    def ensure_folder(self) -> str:
        """Id of the app folder, created if absent. Two racing callers may both create one."""
        query = (
            f"name = {quote_query_value(self.folder_name)} "
            f"and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
        )
        folders = self.client.list_files(query, fields="files(id,name)")
        if folders:
            self.logger.debug(f"Found existing folder: {folders[0]['id']}")
            return folders[0]["id"]
        folder_id = self.client.create_folder(self.folder_name)
        self.logger.info(f"Created new folder {self.folder_name}: {folder_id}")
        return folder_id

    def find_data_file(self, folder_id: str) -> Optional[str]:
        query = (
            f"name = {quote_query_value(self.data_file_name)} "
            f"and {quote_query_value(folder_id)} in parents and trashed = false"
        )
        files = self.client.list_files(query, fields="files(id,name)")
        return files[0]["id"] if files else None

    def save(self, students: Sequence[Student]) -> str:
        """Replace the data file's content with the roster (create it on first save)."""
        folder_id = self.ensure_folder()
        file_id = self.find_data_file(folder_id)
        content = dumps(remote_document(students), pretty=True)
        if file_id:
            file_id = self.client.update_file(file_id, self.data_file_name, content)
            self.logger.info(f"Data updated in Google Drive: {file_id}")
        else:
            file_id = self.client.create_file(self.data_file_name, folder_id, content)
            self.logger.info(f"Data saved to Google Drive: {file_id}")
        return file_id

    def load(self) -> List[Student]:
        """Roster from the data file; empty when the file does not exist yet."""
        folder_id = self.ensure_folder()
        file_id = self.find_data_file(folder_id)
        if not file_id:
            self.logger.info("No data file found in Google Drive")
            return []

        text = self.client.download(file_id)
        try:
            document = json.loads(text)
        except ValueError as e:
            raise RemoteDataCorrupt(f"Google Drive data file is not valid JSON: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get("students"), list):
            self.logger.warning("Invalid data format in Google Drive file")
            return []
        try:
            students = students_from_document(document)
        except ValueError as e:
            raise RemoteDataCorrupt(f"Google Drive data file has invalid students: {e}") from e
        self.logger.info(f"Loaded {len(students)} student(s) from Google Drive")
        return students

    def export_snapshot(self, students: Sequence[Student], name: Optional[str] = None) -> str:
        """Write a new export file next to the data file. Never overwrites."""
        folder_id = self.ensure_folder()
        file_name = name or f"iep-export-{utc_now().date().isoformat()}.json"
        file_id = self.client.create_file(file_name, folder_id, dumps(export_document(students), pretty=True))
        self.logger.info(f"Data exported to Google Drive as {file_name}: {file_id}")
        return file_id

    def create_backup(self) -> str:
        students = self.load()
        stamp = utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")
        name = "backup-" + stamp.replace(":", "-").replace(".", "-") + ".json"
        return self.export_snapshot(students, name)

    def delete_all(self) -> int:
        """Delete every file in the folder, app-created or not. Returns the number deleted."""
        folder_id = self.ensure_folder()
        files = self.client.list_files(
            f"{quote_query_value(folder_id)} in parents and trashed = false",
            fields="files(id,name)",
        )
        for item in files:
            self.client.delete_file(item["id"])
            self.logger.info(f"Deleted file: {item.get('name')}")
        self.logger.info("All data deleted from Google Drive")
        return len(files)

    def folder_info(self) -> FolderInfo:
        folder_id = self.ensure_folder()
        files = self.client.list_files(
            f"{quote_query_value(folder_id)} in parents and trashed = false",
            fields="files(id,name,modifiedTime)",
        )
        data_file = next((f for f in files if f.get("name") == self.data_file_name), None)
        return FolderInfo(
            folder_id=folder_id,
            file_count=len(files),
            last_modified=data_file.get("modifiedTime") if data_file else None,
        )
