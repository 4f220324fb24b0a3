import json
from datetime import date

import pytest

from conftest import make_goal
from iep_tracker.core.roster import GoalNote, Student
from iep_tracker.storage.errors import CompositeClearFailure, ImportValidationError, StorageFailure
from iep_tracker.storage.facade import LoadSource, StorageFacade
from iep_tracker.storage.kv import MemoryKeyValueStore
from iep_tracker.storage.local import LocalStore


class TestLoad:
    def test_signed_out_uses_local(self, facade, local_store, fake_remote, sample_students):
        local_store.save(sample_students)
        result = facade.load(None)
        assert result.source == LoadSource.LOCAL
        assert not result.remote.attempted
        assert len(result.students) == 2

    def test_remote_wins_and_refreshes_local(self, facade, local_store, fake_remote, sample_students):
        fake_remote.students = sample_students[:1]
        result = facade.load("token")
        assert result.source == LoadSource.REMOTE
        assert result.remote.ok
        assert [s.student_id for s in local_store.load()] == ["S1"]

    def test_empty_remote_falls_back_to_local(self, facade, local_store, sample_students):
        local_store.save(sample_students)
        result = facade.load("token")
        assert result.source == LoadSource.LOCAL
        assert result.remote.ok
        assert len(result.students) == 2

    def test_remote_failure_falls_back_to_local(self, facade, local_store, fake_remote, auth_error, sample_students):
        local_store.save(sample_students)
        fake_remote.fail_with = auth_error
        result = facade.load("token")
        assert result.source == LoadSource.LOCAL
        assert result.remote.attempted and not result.remote.ok
        assert result.remote.error is auth_error
        assert len(result.students) == 2


class TestSave:
    def test_local_and_remote(self, facade, local_store, fake_remote, sample_students):
        result = facade.save(sample_students, "token")
        assert result.local.ok
        assert result.local.backup_key == "iep-tracker-backup-2024-01-10"
        assert result.remote.ok
        assert len(fake_remote.students) == 2
        assert len(local_store.load()) == 2

    def test_remote_failure_keeps_local(self, facade, local_store, fake_remote, auth_error, sample_students):
        fake_remote.fail_with = auth_error
        result = facade.save(sample_students, "token")
        assert result.local.ok
        assert result.remote.attempted and not result.remote.ok
        assert len(local_store.load()) == 2

    def test_signed_out_skips_remote(self, facade, fake_remote, sample_students):
        result = facade.save(sample_students)
        assert not result.remote.attempted
        assert fake_remote.students == []

    def test_local_failure_raises(self, fake_remote, sample_students):
        facade = StorageFacade(LocalStore(MemoryKeyValueStore(quota_bytes=5)), lambda token: fake_remote)
        with pytest.raises(StorageFailure):
            facade.save(sample_students, "token")
        assert fake_remote.students == []

    def test_saves_a_snapshot(self, facade, local_store, sample_students):
        facade.save(sample_students)
        sample_students[0].goals[0].title = "Mutated later"
        assert local_store.load()[0].goals[0].title == "Reading fluency"


class TestExportImport:
    def test_export_writes_file(self, facade, tmp_path, sample_students):
        result = facade.export(sample_students, filename="out.json")
        assert result.path == tmp_path / "exports" / "out.json"
        document = json.loads(result.path.read_text())
        assert document["exportInfo"]["appName"] == "IEP Tracker"
        assert document["exportInfo"]["totalStudents"] == 2
        assert not result.remote.attempted

    def test_export_also_to_drive(self, facade, fake_remote, sample_students):
        result = facade.export(sample_students, "token")
        assert result.remote.ok
        assert len(fake_remote.exports) == 1

    def test_import_export_file(self, facade, sample_students):
        custom = make_goal("g2", frequency="custom", custom_days=10, title="Math facts",
                           results=[(date(2024, 1, 5), "fail")])
        custom.description = "Add within 20, \"quoted\" and unicode \u00e9"
        custom.notes = [
            GoalNote(note_id="n1", date=date(2024, 1, 5), note="Needed prompting"),
            GoalNote(note_id="n2", date=date(2024, 1, 6), note="Better today"),
        ]
        sample_students[1].goals.append(custom)
        path = facade.export(sample_students).path
        assert facade.import_students(path) == sample_students

    def test_import_bare_list(self, facade):
        students = facade.import_students([{"studentId": "A", "studentName": "B", "goals": []}])
        assert students == [Student(student_id="A", student_name="B")]

    def test_import_json_text(self, facade):
        text = json.dumps({"students": [{"studentId": "A", "studentName": "B", "goals": []}]})
        assert len(facade.import_students(text)) == 1

    def test_import_reports_first_bad_index(self, facade):
        data = {"students": [
            {"studentId": "A", "studentName": "B", "goals": []},
            {"studentId": "C", "goals": []},
        ]}
        with pytest.raises(ImportValidationError) as exc_info:
            facade.import_students(data)
        assert exc_info.value.index == 1

    def test_import_invalid_goal(self, facade):
        data = [{"studentId": "A", "studentName": "B", "goals": [{"goalId": "g"}]}]
        with pytest.raises(ImportValidationError) as exc_info:
            facade.import_students(data)
        assert exc_info.value.index == 0

    def test_import_not_an_array(self, facade):
        with pytest.raises(ImportValidationError):
            facade.import_students({"students": "nope"})

    def test_import_missing_file(self, facade, tmp_path):
        with pytest.raises(ImportValidationError):
            facade.import_students(tmp_path / "missing.json")


class TestClearAll:
    def test_clears_both(self, facade, local_store, fake_remote, sample_students):
        facade.save(sample_students, "token")
        result = facade.clear_all("token")
        assert result.ok
        assert fake_remote.deleted
        assert local_store.load() == []
        assert local_store.list_backups() == []

    def test_remote_failure_is_composite(self, facade, local_store, fake_remote, auth_error, sample_students):
        facade.save(sample_students, "token")
        fake_remote.fail_with = auth_error
        with pytest.raises(CompositeClearFailure) as exc_info:
            facade.clear_all("token")
        assert exc_info.value.local_cleared
        assert "Local data cleared" in str(exc_info.value)
        assert local_store.load() == []


class TestRemoteBackupAndInfo:
    def test_remote_backup_requires_credential(self, facade):
        with pytest.raises(ValueError):
            facade.create_remote_backup(None)

    def test_remote_backup(self, facade, fake_remote):
        assert facade.create_remote_backup("token") == "backup-1"

    def test_storage_info_swallows_remote_errors(self, facade, fake_remote, auth_error):
        fake_remote.fail_with = auth_error
        info = facade.storage_info("token")
        assert info["google_drive"] is None
        assert info["backup_count"] == 0

    def test_storage_info_with_remote(self, facade):
        info = facade.storage_info("token")
        assert info["google_drive"]["folder_id"] == "folder-1"


def test_no_remote_factory_never_touches_drive(local_store, sample_students):
    facade = StorageFacade(local_store)
    assert not facade.save(sample_students, "token").remote.attempted
