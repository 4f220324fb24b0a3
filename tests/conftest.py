"""
Shared fixtures: in-memory database, local store with a fixed clock, sample roster,
and an in-memory stand-in for the Google Drive mirror. No network calls.
"""
from datetime import date, datetime, timezone

import pytest

from iep_tracker.core.db import Database
from iep_tracker.core.roster import AssessmentResult, Goal, Student
from iep_tracker.storage.errors import RemoteErrorKind, RemoteUnavailable
from iep_tracker.storage.facade import StorageFacade
from iep_tracker.storage.kv import MemoryKeyValueStore, SqlKeyValueStore
from iep_tracker.storage.local import LocalStore


class Clock:
    """Settable UTC clock for backup timestamps."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeRemoteStore:
    """In-memory mirror with the RemoteStore surface used by the facade."""

    def __init__(self, students=None):
        self.students = list(students or [])
        self.exports = []
        self.backups = 0
        self.deleted = False
        self.fail_with = None

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def save(self, students):
        self._check()
        self.students = list(students)
        return "data-file"

    def load(self):
        self._check()
        return list(self.students)

    def export_snapshot(self, students, name=None):
        self._check()
        self.exports.append((name, list(students)))
        return f"export-{len(self.exports)}"

    def create_backup(self):
        self._check()
        self.backups += 1
        return f"backup-{self.backups}"

    def delete_all(self):
        self._check()
        self.deleted = True
        self.students = []
        return 1

    def folder_info(self):
        from iep_tracker.storage.remote import FolderInfo
        self._check()
        return FolderInfo("folder-1", 1, "2024-01-10T10:00:00.000Z")


def make_goal(goal_id="g1", frequency="weekly", results=(), custom_days=None, title="Reading fluency"):
    return Goal(
        goal_id=goal_id,
        title=title,
        description="Read 90 wpm",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 6, 1),
        frequency=frequency,
        custom_frequency_days=custom_days,
        assessment_results=[AssessmentResult(date=d, result=r) for d, r in results],
    )


@pytest.fixture
def auth_error():
    return RemoteUnavailable("Google Drive API error: 401 - invalid credentials", RemoteErrorKind.AUTH, 401)


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def clock():
    return Clock(datetime(2024, 1, 10, 15, 30, tzinfo=timezone.utc))


@pytest.fixture
def sql_kv(database):
    return SqlKeyValueStore(database)


@pytest.fixture
def memory_kv():
    return MemoryKeyValueStore()


@pytest.fixture
def local_store(sql_kv, clock):
    return LocalStore(sql_kv, max_backups=7, now=clock)


@pytest.fixture
def fake_remote():
    return FakeRemoteStore()


@pytest.fixture
def facade(local_store, fake_remote, tmp_path):
    return StorageFacade(local_store, lambda token: fake_remote, export_dir=tmp_path / "exports")


@pytest.fixture
def sample_students():
    return [
        Student(
            student_id="S1",
            student_name="Lee, Ana",
            goals=[
                make_goal(
                    "g1",
                    results=[
                        (date(2024, 1, 8), "pass"),
                        (date(2024, 1, 8), "fail"),
                        (date(2024, 1, 8), "pass"),
                        (date(2024, 1, 9), "pass"),
                        (date(2024, 1, 9), "fail"),
                    ],
                )
            ],
        ),
        Student(student_id="S2", student_name="Adams, Ben", goals=[]),
    ]
