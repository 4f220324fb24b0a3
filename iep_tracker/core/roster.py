"""
Roster data model: students, goals, assessment results and goal notes.
Pydantic models with camelCase aliases matching the persisted JSON documents.
"""
import datetime as dt
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Frequency = Literal["daily", "weekly", "biweekly", "monthly", "quarterly", "custom"]
Result = Literal["pass", "fail"]

FREQUENCY_DAYS: Dict[str, int] = {
    "daily": 1,
    "weekly": 7,
    "biweekly": 14,
    "monthly": 30,
    "quarterly": 90,
}


class _RosterModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AssessmentResult(_RosterModel):
    """One pass/fail observation. Several may share a date."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    date: dt.date
    result: Result


class GoalNote(_RosterModel):
    note_id: str = Field(alias="noteId")
    date: dt.date
    note: str


class Goal(_RosterModel):
    goal_id: str = Field(alias="goalId")
    title: str
    description: str = ""
    start_date: dt.date = Field(alias="startDate")
    end_date: dt.date = Field(alias="endDate")
    frequency: Frequency = "weekly"
    custom_frequency_days: Optional[int] = Field(default=None, alias="customFrequencyDays", gt=0)
    assessment_results: List[AssessmentResult] = Field(default_factory=list, alias="assessmentResults")
    notes: List[GoalNote] = Field(default_factory=list)

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_default(cls, value: Any) -> Any:
        # Goals saved before notes existed carry no notes key or a null one
        return [] if value is None else value

    @model_validator(mode="after")
    def _check_custom_frequency(self) -> "Goal":
        if self.frequency == "custom":
            if self.custom_frequency_days is None:
                raise ValueError("customFrequencyDays is required when frequency is 'custom'")
        elif self.custom_frequency_days is not None:
            self.custom_frequency_days = None
        return self


class Student(_RosterModel):
    student_id: str = Field(alias="studentId")
    student_name: str = Field(alias="studentName")
    goals: List[Goal] = Field(default_factory=list)


def students_from_data(data: Iterable[Dict[str, Any]]) -> List[Student]:
    """Validate a list of student dicts into models. Raises pydantic.ValidationError."""
    return [Student.model_validate(item) for item in data]


def students_to_data(students: Iterable[Student]) -> List[Dict[str, Any]]:
    """Dump students to JSON-ready dicts using the persisted field names."""
    return [
        student.model_dump(mode="json", by_alias=True, exclude_none=True)
        for student in students
    ]


def copy_students(students: Iterable[Student]) -> List[Student]:
    return [student.model_copy(deep=True) for student in students]


def total_goals(students: Iterable[Student]) -> int:
    return sum(len(student.goals) for student in students)
