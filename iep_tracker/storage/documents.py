"""
JSON document shapes shared by the local store, the remote mirror and file export/import.
"""
import json
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError

from iep_tracker.core.dates import utc_timestamp
from iep_tracker.core.roster import Student, students_from_data, students_to_data, total_goals
from iep_tracker.storage.errors import ImportValidationError

DOCUMENT_VERSION = "1.0"
APP_NAME = "IEP Tracker"


def local_document(students: Sequence[Student]) -> Dict[str, Any]:
    return {
        "version": DOCUMENT_VERSION,
        "timestamp": utc_timestamp(),
        "students": students_to_data(students),
    }


def backup_document(students: Sequence[Student], backup_date: str) -> Dict[str, Any]:
    return {
        "version": DOCUMENT_VERSION,
        "backupDate": backup_date,
        "students": students_to_data(students),
    }


def remote_document(students: Sequence[Student]) -> Dict[str, Any]:
    timestamp = utc_timestamp()
    return {
        "version": DOCUMENT_VERSION,
        "timestamp": timestamp,
        "students": students_to_data(students),
        "metadata": {
            "totalStudents": len(students),
            "totalGoals": total_goals(students),
            "lastModified": timestamp,
        },
    }


def export_document(students: Sequence[Student]) -> Dict[str, Any]:
    return {
        "exportInfo": {
            "version": DOCUMENT_VERSION,
            "exportDate": utc_timestamp(),
            "totalStudents": len(students),
            "totalGoals": total_goals(students),
            "appName": APP_NAME,
        },
        "students": students_to_data(students),
    }


def dumps(document: Dict[str, Any], pretty: bool = False) -> str:
    if pretty:
        return json.dumps(document, indent=2, ensure_ascii=False)
    return json.dumps(document, ensure_ascii=False)


def parse_import(data: Any) -> List[Student]:
    """Validate an import document: {"students": [...]} or a bare list.

    Nothing is returned unless every entry is valid; the first bad entry's index is reported.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise ImportValidationError(f"Failed to parse import file: {e}") from e

    students = data.get("students") if isinstance(data, dict) else data
    if not isinstance(students, list):
        raise ImportValidationError("Invalid file format: students data must be an array")

    for index, entry in enumerate(students):
        if (
            not isinstance(entry, dict)
            or not entry.get("studentId")
            or not entry.get("studentName")
            or not isinstance(entry.get("goals"), list)
        ):
            raise ImportValidationError(
                f"Invalid student data at index {index}: missing required fields", index=index
            )

    parsed: List[Student] = []
    for index, entry in enumerate(students):
        try:
            parsed.append(Student.model_validate(entry))
        except ValidationError as e:
            raise ImportValidationError(
                f"Invalid student data at index {index}: {e.error_count()} invalid field(s)", index=index
            ) from e
    return parsed


def students_from_document(document: Any) -> List[Student]:
    """Students of a stored document. Raises ValueError if the shape is wrong."""
    if not isinstance(document, dict) or not isinstance(document.get("students"), list):
        raise ValueError("document has no students array")
    return students_from_data(document["students"])
