"""
FastAPI server for the IEP tracker. Serve with run_api_server(tracker_app).
Roster endpoints under /api/students, reports under /api/students/{id}/report and /api/overview,
storage management under /api/storage, /api/backups, /api/export, /api/import, /api/sync and /api/data.
An "Authorization: Bearer <token>" header overrides the app's stored Google token for that request.
Docs when enabled: http://<host>:<port>/docs
"""
import logging
import threading
import datetime as dt
from typing import Any, Dict, List, Optional, Union

from fastapi import Body, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from iep_tracker.core.roster import Frequency, Result, Student, students_to_data
from iep_tracker.core.report import (
    goal_summary,
    goals_above_threshold,
    overall_success_rate,
    render_student_report,
    sort_by_last_name,
    student_status_counts,
)
from iep_tracker.core.status import assessment_status, format_frequency
from iep_tracker.storage.errors import (
    BackupCorrupt,
    BackupNotFound,
    CompositeClearFailure,
    ImportValidationError,
    RemoteDataCorrupt,
    RemoteErrorKind,
    RemoteUnavailable,
    StorageError,
)

logger = logging.getLogger(__name__)


class StudentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: str = Field(alias="studentId")
    student_name: str = Field(alias="studentName")


class GoalCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str = ""
    start_date: dt.date = Field(alias="startDate")
    end_date: dt.date = Field(alias="endDate")
    frequency: Frequency = "weekly"
    custom_frequency_days: Optional[int] = Field(default=None, alias="customFrequencyDays")


class AssessmentCreate(BaseModel):
    result: Result
    date: Optional[dt.date] = None


class NoteBody(BaseModel):
    note: str
    date: Optional[dt.date] = None


class ExportRequest(BaseModel):
    filename: Optional[str] = None


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def _student_data(student: Student) -> Dict[str, Any]:
    return students_to_data([student])[0]


def _remote_result(result) -> Dict[str, Any]:
    return {
        "attempted": result.attempted,
        "ok": result.ok,
        "error": str(result.error) if result.error else None,
    }


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LookupError)
    async def not_found(_request: Request, exc: LookupError):
        return _error(404, str(exc).strip("'\""))

    @app.exception_handler(ValueError)
    async def bad_request(_request: Request, exc: ValueError):
        return _error(400, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error(_request: Request, exc: StorageError):
        if isinstance(exc, BackupNotFound):
            return _error(404, str(exc))
        if isinstance(exc, ImportValidationError):
            return _error(422, str(exc), index=exc.index)
        if isinstance(exc, BackupCorrupt):
            return _error(422, str(exc))
        if isinstance(exc, CompositeClearFailure):
            return _error(502, str(exc), local_cleared=True)
        if isinstance(exc, RemoteUnavailable):
            status_code = 401 if exc.kind == RemoteErrorKind.AUTH else 502
            return _error(status_code, str(exc), kind=exc.kind)
        if isinstance(exc, RemoteDataCorrupt):
            return _error(502, str(exc))
        logger.error(f"Storage failure: {exc}")
        return _error(500, str(exc))


def create_app(tracker_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given TrackerApp instance."""
    app = FastAPI(title="IEP Tracker API", description="Students, goals, assessments and storage")
    _register_error_handlers(app)

    # Roster

    @app.get("/api/students")
    def list_students() -> List[Dict[str, Any]]:
        return students_to_data(tracker_app.snapshot())

    @app.post("/api/students", status_code=201)
    def create_student(body: StudentCreate) -> Dict[str, Any]:
        student = tracker_app.add_student(body.student_id, body.student_name)
        return _student_data(student)

    @app.get("/api/students/{student_id}")
    def get_student(student_id: str) -> Dict[str, Any]:
        return _student_data(tracker_app.get_student(student_id))

    @app.put("/api/students/{student_id}")
    def replace_student(student_id: str, student: Student) -> Dict[str, Any]:
        if student.student_id != student_id:
            raise ValueError("studentId in body does not match the URL")
        return _student_data(tracker_app.update_student(student))

    @app.delete("/api/students/{student_id}", status_code=204)
    def delete_student(student_id: str) -> None:
        tracker_app.delete_student(student_id)

    @app.post("/api/students/{student_id}/goals", status_code=201)
    def create_goal(student_id: str, body: GoalCreate) -> Dict[str, Any]:
        goal = tracker_app.add_goal(
            student_id,
            body.title,
            body.start_date,
            body.end_date,
            frequency=body.frequency,
            description=body.description,
            custom_frequency_days=body.custom_frequency_days,
        )
        return goal.model_dump(mode="json", by_alias=True, exclude_none=True)

    @app.delete("/api/students/{student_id}/goals/{goal_id}", status_code=204)
    def delete_goal(student_id: str, goal_id: str) -> None:
        tracker_app.delete_goal(student_id, goal_id)

    @app.post("/api/students/{student_id}/goals/{goal_id}/assessments", status_code=201)
    def record_assessment(student_id: str, goal_id: str, body: AssessmentCreate) -> Dict[str, Any]:
        assessment = tracker_app.record_assessment(student_id, goal_id, body.result, body.date)
        goal = tracker_app.get_goal(student_id, goal_id)
        status = assessment_status(goal)
        return {
            "assessment": assessment.model_dump(mode="json"),
            "status": status._asdict(),
        }

    @app.delete("/api/students/{student_id}/goals/{goal_id}/assessments/{day}")
    def delete_assessments(student_id: str, goal_id: str, day: dt.date) -> Dict[str, Any]:
        return {"removed": tracker_app.delete_assessments_on(student_id, goal_id, day)}

    @app.post("/api/students/{student_id}/goals/{goal_id}/notes", status_code=201)
    def add_note(student_id: str, goal_id: str, body: NoteBody) -> Dict[str, Any]:
        note = tracker_app.add_note(student_id, goal_id, body.note, body.date)
        return note.model_dump(mode="json", by_alias=True)

    @app.put("/api/students/{student_id}/goals/{goal_id}/notes/{note_id}")
    def edit_note(student_id: str, goal_id: str, note_id: str, body: NoteBody) -> Dict[str, Any]:
        note = tracker_app.edit_note(student_id, goal_id, note_id, body.note)
        return note.model_dump(mode="json", by_alias=True)

    @app.delete("/api/students/{student_id}/goals/{goal_id}/notes/{note_id}", status_code=204)
    def delete_note(student_id: str, goal_id: str, note_id: str) -> None:
        tracker_app.delete_note(student_id, goal_id, note_id)

    # Reports

    @app.get("/api/students/{student_id}/report")
    def student_report(student_id: str, fmt: str = Query("json", alias="format")):
        student = tracker_app.get_student(student_id)
        if fmt == "text":
            return PlainTextResponse(render_student_report(student))
        goals = []
        for goal in student.goals:
            summary = goal_summary(goal)
            goals.append({
                "goalId": goal.goal_id,
                "title": goal.title,
                "frequency": format_frequency(goal),
                "status": assessment_status(goal)._asdict(),
                "totalAssessments": summary.total_assessments,
                "totalPasses": summary.total_passes,
                "passPercentage": summary.pass_percentage,
                "lastAssessmentDate": summary.last_assessment_date,
                "dailyPassRates": [
                    {"date": rate.date, "passRate": round(rate.pass_rate, 2)}
                    for rate in summary.daily_pass_rates
                ],
                "todayStats": summary.today._asdict(),
            })
        return {
            "studentId": student.student_id,
            "studentName": student.student_name,
            "goalsAboveThreshold": goals_above_threshold(student),
            "goals": goals,
        }

    @app.get("/api/overview")
    def overview() -> List[Dict[str, Any]]:
        """Per-student goal counts, due/overdue counts and all-time success rate, by last name."""
        rows = []
        for student in sort_by_last_name(tracker_app.snapshot()):
            counts = student_status_counts(student)
            rows.append({
                "studentId": student.student_id,
                "studentName": student.student_name,
                "goals": len(student.goals),
                "dueToday": counts["due_today"],
                "overdue": counts["overdue"],
                "successRate": round(overall_success_rate(student), 2),
            })
        return rows

    # Storage

    @app.get("/api/storage")
    def storage_info(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
        return tracker_app.storage_info(_bearer(authorization))

    @app.get("/api/backups")
    def list_backups() -> List[Dict[str, Any]]:
        return [backup._asdict() for backup in tracker_app.list_backups()]

    @app.post("/api/backups/{key}/restore")
    def restore_backup(key: str) -> Dict[str, Any]:
        students = tracker_app.restore_backup(key)
        return {"restored": len(students)}

    @app.post("/api/remote/backup", status_code=201)
    def remote_backup(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
        return {"fileId": tracker_app.create_remote_backup(_bearer(authorization))}

    @app.post("/api/export")
    def export(body: Optional[ExportRequest] = None, authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
        result = tracker_app.export(body.filename if body else None, _bearer(authorization))
        return {"path": str(result.path), "remote": _remote_result(result.remote)}

    @app.post("/api/import")
    def import_students(document: Union[Dict[str, Any], List[Any]] = Body(...)) -> Dict[str, Any]:
        students = tracker_app.import_students(document)
        return {"imported": len(students)}

    @app.post("/api/sync/load")
    def sync_load(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
        result = tracker_app.load(_bearer(authorization))
        return {
            "source": result.source,
            "students": len(result.students),
            "remote": _remote_result(result.remote),
        }

    @app.post("/api/sync/save")
    def sync_save(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
        result = tracker_app.save_now(_bearer(authorization))
        return {
            "local": {"ok": result.local.ok, "backupKey": result.local.backup_key},
            "remote": _remote_result(result.remote),
        }

    @app.delete("/api/data")
    def clear_data(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
        result = tracker_app.clear_all(_bearer(authorization))
        return {"local_cleared": True, "remote": _remote_result(result)}

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, Any]:
        """Pending in-memory timers (the debounced auto-save)."""
        timers = tracker_app.task_manager.get_active_timers()
        return {
            "active_timers": [
                {"name": t["name"], "next_run_at": t["next_run_at"].isoformat()} for t in timers
            ]
        }

    return app


def run_api_server(tracker_app: Any, background: bool = False) -> Optional[threading.Thread]:
    """
    Serve the API with uvicorn on api.host (default 127.0.0.1) and api.port (default 8765).
    With background=True the server runs in a daemon thread and the thread is returned.
    """
    import uvicorn

    api_config = tracker_app.config_data.get("api") or {}
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(tracker_app)

    def run_uvicorn():
        logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
        uvicorn.run(fastapi_app, host=host, port=port)

    if not background:
        run_uvicorn()
        return None

    thread = threading.Thread(target=run_uvicorn, daemon=True)
    thread.start()
    logger.info("API server thread started.")
    return thread
