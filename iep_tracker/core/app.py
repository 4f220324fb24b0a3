"""
Application state: the in-memory roster, its mutations, and debounced persistence through the
storage facade. Storage backends, the timer manager and the token source are injected.
"""
import logging
import sys
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from iep_tracker.core.auth import DriveAuth
from iep_tracker.core.config import Config
from iep_tracker.core.dates import DateLike, parse_date, utc_today
from iep_tracker.core.roster import Goal, GoalNote, Student, AssessmentResult, copy_students
from iep_tracker.core.task_manager import TaskManager
from iep_tracker.storage import StorageFacade, build_facade
from iep_tracker.storage.errors import StorageError
from iep_tracker.storage.facade import ExportResult, LoadResult, RemoteResult, SaveResult
from iep_tracker.storage.local import BackupInfo

AUTOSAVE_TASK = "autosave"
DEFAULT_AUTOSAVE_DELAY = 1.0


class StudentNotFound(LookupError):
    pass


class GoalNotFound(LookupError):
    pass


class NoteNotFound(LookupError):
    pass


def generate_id() -> str:
    return uuid.uuid4().hex


class TrackerApp:
    def __init__(
        self,
        facade: StorageFacade,
        task_manager: Optional[TaskManager] = None,
        auth: Optional[DriveAuth] = None,
        autosave_delay: float = DEFAULT_AUTOSAVE_DELAY,
        config_data: Optional[Dict[str, Any]] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.facade = facade
        self.task_manager = task_manager or TaskManager()
        self.auth = auth
        self.autosave_delay = autosave_delay
        self.config_data = config_data or {}

        self.students: List[Student] = []
        self.initialized = False
        self.last_save: Optional[SaveResult] = None
        self.last_save_error: Optional[StorageError] = None
        self._access_token: Optional[str] = None
        self._lock = threading.RLock()
        # Serializes writes to storage so a clear cannot be overtaken by an in-flight save
        self._persist_lock = threading.RLock()
        self._dirty = False

    @classmethod
    def from_config(cls, config_path: Optional[str] = None, setup_logging: bool = True) -> "TrackerApp":
        """Build the app from a config file: database, storage facade, Drive auth and logging."""
        config = Config(config_path=config_path)
        if setup_logging:
            cls._setup_logging(config.data)

        from iep_tracker.core.db import init_db
        database = init_db(config.data)
        facade = build_facade(config.data, database)

        drive_config = config.section("google_drive")
        auth = None
        if drive_config.get("enabled", False):
            auth = DriveAuth(drive_config.get("client_secret_path"), drive_config["token_path"])

        delay = float(config.section("autosave").get("delay_seconds", DEFAULT_AUTOSAVE_DELAY))
        return cls(facade, auth=auth, autosave_delay=delay, config_data=config.data)

    @staticmethod
    def _setup_logging(config_data: Dict[str, Any]) -> None:
        """Configure logging to write to both file and stdout"""
        logging_config = config_data.get("logging") or {}
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        root_logger.setLevel(getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        log_file = logging_config.get("file")
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("IEP Tracker starting...")

    # Credentials

    @property
    def access_token(self) -> Optional[str]:
        """Explicitly set token, else the cached Google token (if Drive sync is configured)."""
        if self._access_token:
            return self._access_token
        if self.auth is not None:
            return self.auth.access_token(interactive=False)
        return None

    def set_access_token(self, token: Optional[str]) -> None:
        self._access_token = token

    def _credential(self, credential: Optional[str]) -> Optional[str]:
        return credential if credential else self.access_token

    # Persistence

    def load(self, credential: Optional[str] = None) -> LoadResult:
        result = self.facade.load(self._credential(credential))
        with self._lock:
            self.students = result.students
            self.initialized = True
        self.logger.info(f"Loaded {len(result.students)} student(s) from {result.source} storage")
        return result

    def snapshot(self) -> List[Student]:
        with self._lock:
            return copy_students(self.students)

    def save_now(self, credential: Optional[str] = None) -> SaveResult:
        """Persist the current roster immediately. Raises StorageFailure if the local write fails."""
        self.task_manager.cancel(AUTOSAVE_TASK)
        token = self._credential(credential)
        with self._persist_lock:
            with self._lock:
                students = copy_students(self.students)
                self._dirty = False
            try:
                result = self.facade.save(students, token)
            except StorageError:
                self._dirty = True
                raise
        self.last_save = result
        self.last_save_error = None
        return result

    def _autosave(self) -> None:
        with self._persist_lock:
            if not self._dirty:
                self.logger.debug("Auto-save skipped, nothing changed since the last write")
                return
            try:
                result = self.save_now()
            except StorageError as e:
                self.last_save_error = e
                self.logger.error(f"Auto-save failed: {e}")
                return
        where = "local storage and Google Drive" if result.remote.ok else "local storage"
        self.logger.info(f"Auto-saved student data to {where}")

    def schedule_autosave(self) -> None:
        """Persist after autosave_delay seconds of quiet. Nothing is saved before the first load."""
        if not self.initialized:
            return
        self._dirty = True
        self.task_manager.schedule_task(AUTOSAVE_TASK, self._autosave, self.autosave_delay)

    def flush(self) -> bool:
        """Run a pending auto-save now. Returns True if one was pending."""
        return self.task_manager.run_now(AUTOSAVE_TASK)

    def shutdown(self) -> None:
        self.flush()
        self.task_manager.stop()

    # Lookups

    def get_student(self, student_id: str) -> Student:
        with self._lock:
            for student in self.students:
                if student.student_id == student_id:
                    return student
        raise StudentNotFound(f"Student not found: {student_id}")

    def get_goal(self, student_id: str, goal_id: str) -> Goal:
        student = self.get_student(student_id)
        for goal in student.goals:
            if goal.goal_id == goal_id:
                return goal
        raise GoalNotFound(f"Goal {goal_id} not found for student {student_id}")

    # Student mutations

    def add_student(self, student_id: str, student_name: str, goals: Optional[List[Goal]] = None) -> Student:
        student_id = (student_id or "").strip()
        student_name = (student_name or "").strip()
        if not student_id or not student_name:
            raise ValueError("Student id and name are required")
        with self._lock:
            if any(s.student_id == student_id for s in self.students):
                raise ValueError(f"Student id already exists: {student_id}")
            student = Student(student_id=student_id, student_name=student_name, goals=goals or [])
            self.students.append(student)
        self.schedule_autosave()
        return student

    def update_student(self, student: Student) -> Student:
        """Replace the student with the same id."""
        with self._lock:
            for index, existing in enumerate(self.students):
                if existing.student_id == student.student_id:
                    self.students[index] = student
                    break
            else:
                raise StudentNotFound(f"Student not found: {student.student_id}")
        self.schedule_autosave()
        return student

    def delete_student(self, student_id: str) -> None:
        with self._lock:
            remaining = [s for s in self.students if s.student_id != student_id]
            if len(remaining) == len(self.students):
                raise StudentNotFound(f"Student not found: {student_id}")
            self.students = remaining
        self.schedule_autosave()

    def replace_students(self, students: List[Student]) -> None:
        """Swap in a whole roster (import or backup restore)."""
        with self._lock:
            self.students = copy_students(students)
            self.initialized = True
        self.schedule_autosave()

    # Goal mutations

    def add_goal(
        self,
        student_id: str,
        title: str,
        start_date: DateLike,
        end_date: DateLike,
        frequency: str = "weekly",
        description: str = "",
        custom_frequency_days: Optional[int] = None,
    ) -> Goal:
        title = (title or "").strip()
        if not title:
            raise ValueError("Goal title is required")
        goal = Goal(
            goal_id=generate_id(),
            title=title,
            description=(description or "").strip(),
            start_date=parse_date(start_date),
            end_date=parse_date(end_date),
            frequency=frequency,
            custom_frequency_days=custom_frequency_days if frequency == "custom" else None,
        )
        with self._lock:
            self.get_student(student_id).goals.append(goal)
        self.schedule_autosave()
        return goal

    def delete_goal(self, student_id: str, goal_id: str) -> None:
        with self._lock:
            student = self.get_student(student_id)
            self.get_goal(student_id, goal_id)
            student.goals = [g for g in student.goals if g.goal_id != goal_id]
        self.schedule_autosave()

    def record_assessment(
        self, student_id: str, goal_id: str, result: str, on: Optional[DateLike] = None
    ) -> AssessmentResult:
        assessment = AssessmentResult(date=parse_date(on) if on else utc_today(), result=result)
        with self._lock:
            self.get_goal(student_id, goal_id).assessment_results.append(assessment)
        self.schedule_autosave()
        return assessment

    def delete_assessments_on(self, student_id: str, goal_id: str, on: DateLike) -> int:
        """Remove every assessment of the goal recorded on the given date. Returns how many."""
        day = parse_date(on)
        with self._lock:
            goal = self.get_goal(student_id, goal_id)
            kept = [r for r in goal.assessment_results if r.date != day]
            removed = len(goal.assessment_results) - len(kept)
            goal.assessment_results = kept
        if removed:
            self.schedule_autosave()
        return removed

    # Notes

    def add_note(self, student_id: str, goal_id: str, text: str, on: Optional[DateLike] = None) -> GoalNote:
        text = (text or "").strip()
        if not text:
            raise ValueError("Note text is required")
        note = GoalNote(note_id=generate_id(), date=parse_date(on) if on else utc_today(), note=text)
        with self._lock:
            self.get_goal(student_id, goal_id).notes.append(note)
        self.schedule_autosave()
        return note

    def _find_note(self, goal: Goal, note_id: str) -> GoalNote:
        for note in goal.notes:
            if note.note_id == note_id:
                return note
        raise NoteNotFound(f"Note not found: {note_id}")

    def edit_note(self, student_id: str, goal_id: str, note_id: str, text: str) -> GoalNote:
        text = (text or "").strip()
        if not text:
            raise ValueError("Note text is required")
        with self._lock:
            note = self._find_note(self.get_goal(student_id, goal_id), note_id)
            note.note = text
        self.schedule_autosave()
        return note

    def delete_note(self, student_id: str, goal_id: str, note_id: str) -> None:
        with self._lock:
            goal = self.get_goal(student_id, goal_id)
            self._find_note(goal, note_id)
            goal.notes = [n for n in goal.notes if n.note_id != note_id]
        self.schedule_autosave()

    # Data management

    def export(self, filename: Optional[str] = None, credential: Optional[str] = None) -> ExportResult:
        return self.facade.export(self.snapshot(), self._credential(credential), filename)

    def import_students(self, source: Any) -> List[Student]:
        """Validate an import document and replace the roster with it (all or nothing)."""
        students = self.facade.import_students(source)
        self.replace_students(students)
        return students

    def list_backups(self) -> List[BackupInfo]:
        return self.facade.list_backups()

    def restore_backup(self, key: str) -> List[Student]:
        students = self.facade.restore_backup(key)
        self.replace_students(students)
        return students

    def create_remote_backup(self, credential: Optional[str] = None) -> str:
        token = self._credential(credential)
        if not token:
            raise ValueError("Sign in to Google Drive to create a remote backup")
        return self.facade.create_remote_backup(token)

    def clear_all(self, credential: Optional[str] = None) -> RemoteResult:
        """Delete all data everywhere. The in-memory roster is emptied even if the remote step fails."""
        self.task_manager.cancel(AUTOSAVE_TASK)
        token = self._credential(credential)
        with self._persist_lock:
            with self._lock:
                self.students = []
                self._dirty = False
            return self.facade.clear_all(token)

    def storage_info(self, credential: Optional[str] = None) -> Dict[str, Any]:
        info = self.facade.storage_info(self._credential(credential))
        with self._lock:
            info["students"] = len(self.students)
            info["goals"] = sum(len(s.goals) for s in self.students)
        info["autosave_pending"] = self.task_manager.is_pending(AUTOSAVE_TASK)
        return info
