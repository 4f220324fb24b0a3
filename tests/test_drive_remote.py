import json
from unittest.mock import MagicMock

import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.http import HttpMockSequence

from iep_tracker.storage.drive import DriveClient, quote_query_value
from iep_tracker.storage.errors import RemoteDataCorrupt, RemoteErrorKind, RemoteUnavailable
from iep_tracker.storage.remote import RemoteStore

OK = {"status": "200"}


def drive_error(status, reason=None):
    error = {"code": status, "message": "request failed"}
    if reason:
        error["errors"] = [{"reason": reason, "message": "request failed"}]
    return {"status": str(status)}, json.dumps({"error": error})


def body_text(body):
    return body.decode("utf-8") if isinstance(body, bytes) else body


class TestDriveClient:
    def test_token_goes_on_the_service(self):
        client = DriveClient("tok-123")
        assert client._service._http.credentials.token == "tok-123"

    def test_list_files_follows_pages(self):
        http = HttpMockSequence([
            (OK, json.dumps({"files": [{"id": "a"}], "nextPageToken": "p2"})),
            (OK, json.dumps({"files": [{"id": "b"}]})),
        ])
        files = DriveClient("t", http=http).list_files("trashed = false")
        assert [f["id"] for f in files] == ["a", "b"]
        assert "pageToken=p2" in http.request_sequence[1][0]

    def test_create_file_is_multipart(self):
        http = HttpMockSequence([(OK, json.dumps({"id": "f1"}))])
        file_id = DriveClient("t", http=http).create_file("data.json", "folder", '{"a": 1}')
        assert file_id == "f1"
        uri, method, body, _ = http.request_sequence[0]
        assert method == "POST"
        assert "/upload/drive/v3/files" in uri
        assert "uploadType=multipart" in uri
        assert '"parents": ["folder"]' in body_text(body)
        assert '{"a": 1}' in body_text(body)

    def test_update_uses_patch(self):
        http = HttpMockSequence([(OK, json.dumps({"id": "f1"}))])
        assert DriveClient("t", http=http).update_file("f1", "data.json", "{}") == "f1"
        uri, method, _, _ = http.request_sequence[0]
        assert method == "PATCH"
        assert "/upload/drive/v3/files/f1" in uri

    def test_download(self):
        http = HttpMockSequence([(OK, '{"students": []}')])
        assert DriveClient("t", http=http).download("f1") == '{"students": []}'
        assert "alt=media" in http.request_sequence[0][0]

    def test_delete(self):
        http = HttpMockSequence([({"status": "204"}, "")])
        DriveClient("t", http=http).delete_file("f9")
        uri, method, _, _ = http.request_sequence[0]
        assert method == "DELETE"
        assert uri.split("?")[0].endswith("/drive/v3/files/f9")

    def test_auth_error(self):
        http = HttpMockSequence([drive_error(401, "authError")])
        with pytest.raises(RemoteUnavailable) as exc_info:
            DriveClient("t", http=http).download("f1")
        assert exc_info.value.kind == RemoteErrorKind.AUTH
        assert exc_info.value.status_code == 401

    def test_quota_error(self):
        http = HttpMockSequence([drive_error(403, "storageQuotaExceeded")])
        with pytest.raises(RemoteUnavailable) as exc_info:
            DriveClient("t", http=http).create_folder("x")
        assert exc_info.value.kind == RemoteErrorKind.QUOTA

    def test_rate_limited(self):
        http = HttpMockSequence([drive_error(429)])
        with pytest.raises(RemoteUnavailable) as exc_info:
            DriveClient("t", http=http).create_folder("x")
        assert exc_info.value.kind == RemoteErrorKind.QUOTA

    def test_server_error(self):
        http = HttpMockSequence([drive_error(500)])
        with pytest.raises(RemoteUnavailable) as exc_info:
            DriveClient("t", http=http).create_folder("x")
        assert exc_info.value.kind == RemoteErrorKind.HTTP
        assert exc_info.value.status_code == 500

    def test_rejected_token_is_auth(self):
        http = MagicMock(spec=["request"])
        http.request.side_effect = RefreshError("token expired and cannot be refreshed")
        with pytest.raises(RemoteUnavailable) as exc_info:
            DriveClient("t", http=http).create_folder("x")
        assert exc_info.value.kind == RemoteErrorKind.AUTH

    def test_transport_error(self):
        http = MagicMock(spec=["request"])
        http.request.side_effect = ConnectionError("offline")
        with pytest.raises(RemoteUnavailable) as exc_info:
            DriveClient("t", http=http).create_folder("x")
        assert exc_info.value.kind == RemoteErrorKind.TRANSPORT


def test_quote_query_value():
    assert quote_query_value("it's") == "'it\\'s'"


class TestRemoteStore:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.list_files.return_value = []
        client.create_folder.return_value = "folder-1"
        client.create_file.return_value = "file-1"
        client.update_file.return_value = "file-1"
        return client

    def test_first_save_creates_folder_and_file(self, client, sample_students):
        store = RemoteStore(client)
        assert store.save(sample_students) == "file-1"
        client.create_folder.assert_called_once_with(".iep-tracker-data")
        name, parent, content = client.create_file.call_args.args
        assert (name, parent) == ("students-data.json", "folder-1")
        document = json.loads(content)
        assert document["metadata"]["totalStudents"] == 2
        assert document["metadata"]["totalGoals"] == 1

    def test_save_updates_existing_file(self, client, sample_students):
        client.list_files.side_effect = [[{"id": "folder-1"}], [{"id": "file-7"}]]
        RemoteStore(client).save(sample_students)
        client.create_folder.assert_not_called()
        client.create_file.assert_not_called()
        assert client.update_file.call_args.args[0] == "file-7"

    def test_load_without_file_is_empty(self, client):
        client.list_files.side_effect = [[{"id": "folder-1"}], []]
        assert RemoteStore(client).load() == []

    def test_load_corrupt_json(self, client):
        client.list_files.side_effect = [[{"id": "folder-1"}], [{"id": "file-1"}]]
        client.download.return_value = "{oops"
        with pytest.raises(RemoteDataCorrupt):
            RemoteStore(client).load()

    def test_load_students(self, client):
        client.list_files.side_effect = [[{"id": "folder-1"}], [{"id": "file-1"}]]
        client.download.return_value = json.dumps(
            {"students": [{"studentId": "S1", "studentName": "Lee, Ana", "goals": []}]}
        )
        students = RemoteStore(client).load()
        assert students[0].student_name == "Lee, Ana"

    def test_lookup_error_propagates_without_creating_file(self, client, sample_students):
        client.list_files.side_effect = [
            [{"id": "folder-1"}],
            RemoteUnavailable("401", RemoteErrorKind.AUTH, 401),
        ]
        with pytest.raises(RemoteUnavailable):
            RemoteStore(client).save(sample_students)
        client.create_file.assert_not_called()

    def test_delete_all_removes_every_file(self, client):
        client.list_files.side_effect = [
            [{"id": "folder-1"}],
            [{"id": "a", "name": "students-data.json"}, {"id": "b", "name": "notes.txt"}],
        ]
        assert RemoteStore(client).delete_all() == 2
        assert [c.args[0] for c in client.delete_file.call_args_list] == ["a", "b"]

    def test_create_backup_name(self, client):
        client.list_files.side_effect = [[{"id": "folder-1"}], [], [{"id": "folder-1"}]]
        RemoteStore(client).create_backup()
        name = client.create_file.call_args.args[0]
        assert name.startswith("backup-") and name.endswith(".json")
        assert ":" not in name

    def test_folder_info(self, client):
        client.list_files.side_effect = [
            [{"id": "folder-1"}],
            [{"id": "a", "name": "students-data.json", "modifiedTime": "2024-01-10T10:00:00Z"}],
        ]
        info = RemoteStore(client).folder_info()
        assert info.folder_id == "folder-1"
        assert info.file_count == 1
        assert info.last_modified == "2024-01-10T10:00:00Z"
