"""Normalized fragments produced by the fetch layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .documents import Profile


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RawCustomField(_Record):
    """A relational field value together with its field metadata."""

    field_id: str
    name: Optional[str] = None
    label: Optional[str] = None
    type: Optional[str] = None
    value: Any = None
    context: Optional[str] = None
    context_type: Optional[str] = None


class ProfileSnapshot(BaseModel):
    profile: Profile
    raw_custom_fields: List[RawCustomField] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    placeholders_applied: List[str] = Field(default_factory=list)


def _first_text(*values: Any) -> Optional[str]:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _fill(data: Dict[str, Any], alias: str, name: str, *candidates: Any) -> None:
    """Set ``alias`` from the first usable candidate unless the field was supplied directly."""
    if _first_text(data.get(alias), data.get(name)) is not None:
        if data.get(alias) is None:
            data.pop(alias, None)
        return
    value = _first_text(*candidates)
    if value is not None:
        data[alias] = value


class LessonTrack(_Record):
    """One lesson attempt as reported by the tracking service."""

    lesson_track_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("lessonTrackId", "attemptId", "lesson_track_id")
    )
    lesson_id: str
    course_id: str
    cohort_id: Optional[str] = None
    unit_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("unitId", "moduleId", "unit_id"))
    lesson_title: Optional[str] = None
    course_title: Optional[str] = None
    unit_title: Optional[str] = None
    content_type: Optional[str] = None
    completion_percentage: float = 0
    current_position: float = 0
    time_spent: float = 0
    status: Optional[str] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        # Tracking records nest the lesson and course objects.
        if not isinstance(data, dict):
            return data
        flattened = dict(data)
        lesson = data.get("lesson") if isinstance(data.get("lesson"), dict) else {}
        course = data.get("course") if isinstance(data.get("course"), dict) else {}
        params = course.get("params") if isinstance(course.get("params"), dict) else {}
        _fill(flattened, "lessonId", "lesson_id", lesson.get("lessonId"), lesson.get("id"))
        _fill(flattened, "courseId", "course_id", course.get("courseId"), lesson.get("courseId"))
        _fill(flattened, "lessonTitle", "lesson_title", lesson.get("name"), lesson.get("title"))
        _fill(flattened, "courseTitle", "course_title", course.get("name"), course.get("title"))
        _fill(flattened, "contentType", "content_type", lesson.get("format"), lesson.get("type"))
        if not any(flattened.get(key) for key in ("unitId", "moduleId", "unit_id")):
            _fill(flattened, "moduleId", "unit_id", lesson.get("moduleId"))
        _fill(flattened, "cohortId", "cohort_id", course.get("cohortId"), params.get("cohortId"))
        return flattened

    @field_validator("completion_percentage", "current_position", "time_spent", mode="before")
    @classmethod
    def _numeric(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value


class AttemptRecord(_Record):
    """An assessment attempt enriched with its answers."""

    attempt_id: str
    test_id: str
    lesson_id: Optional[str] = None
    course_id: Optional[str] = None
    unit_id: Optional[str] = None
    cohort_id: Optional[str] = None
    title: Optional[str] = None
    answers: List[Dict[str, Any]] = Field(default_factory=list)
    # None means the service did not report the value; merging keeps the indexed one.
    total_questions: Optional[int] = None
    questions_attempted: Optional[int] = None
    score: Optional[float] = None
    percent_complete: Optional[float] = None
    time_spent: Optional[float] = None
    status: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator(
        "total_questions",
        "questions_attempted",
        "score",
        "percent_complete",
        "time_spent",
        mode="before",
    )
    @classmethod
    def _reported(cls, value: Any) -> Any:
        return None if value == "" else value

    @property
    def answers_failed(self) -> bool:
        return self.status == "error"

    def match_keys(self) -> set[str]:
        return {key for key in (self.test_id, self.attempt_id, self.lesson_id) if key}


__all__ = ["AttemptRecord", "LessonTrack", "ProfileSnapshot", "RawCustomField"]
