"""Webhook payloads accepted from the LMS and assessment services."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .defaults import DEFAULTS
from .documents import Content, Course, Tracking, Unit
from .records import AttemptRecord, LessonTrack


class _EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class HierarchyLesson(_EventModel):
    lesson_id: str = Field(..., min_length=1)
    name: str = ""
    format: Optional[str] = None


class HierarchyModule(_EventModel):
    module_id: str = Field(..., min_length=1)
    name: str = ""
    lessons: List[HierarchyLesson] = Field(default_factory=list)


class _UserEvent(_EventModel):
    user_id: str = Field(..., min_length=1)
    tenant_id: Optional[str] = None
    organisation_id: Optional[str] = None


class CourseHierarchyEvent(_UserEvent):
    kind: Literal["course_hierarchy"]
    cohort_id: Optional[str] = None
    course_id: str = Field(..., min_length=1)
    course_title: str = Field(default="", validation_alias=AliasChoices("courseTitle", "name", "course_title"))
    modules: List[HierarchyModule] = Field(default_factory=list)

    def to_course(self) -> Course:
        units: List[Unit] = []
        for module in self.modules:
            contents = [
                Content(
                    content_id=lesson.lesson_id,
                    lesson_id=lesson.lesson_id,
                    type=lesson.format or DEFAULTS.content_type,
                    title=lesson.name,
                    tracking=Tracking(),
                )
                for lesson in module.lessons
            ]
            units.append(Unit(unit_id=module.module_id, unit_title=module.name, contents=contents))
        return Course(
            course_id=self.course_id,
            course_title=self.course_title or DEFAULTS.course_title_template.format(course_id=self.course_id),
            units=units,
        )


class LessonAttemptEvent(_UserEvent):
    kind: Literal["lesson_attempt"]
    cohort_id: Optional[str] = None
    course_id: str = Field(..., min_length=1)
    unit_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("unitId", "moduleId", "unit_id"))
    lesson_id: str = Field(..., min_length=1)
    attempt_id: str = Field(..., min_length=1)
    lesson_title: Optional[str] = None
    content_type: Optional[str] = None
    completion_percentage: float = Field(default=0, ge=0)
    current_position: float = 0
    time_spent: float = 0
    status: Optional[str] = None

    def to_lesson_track(self) -> LessonTrack:
        return LessonTrack(
            lesson_track_id=self.attempt_id,
            lesson_id=self.lesson_id,
            course_id=self.course_id,
            cohort_id=self.cohort_id,
            unit_id=self.unit_id,
            lesson_title=self.lesson_title,
            content_type=self.content_type,
            completion_percentage=self.completion_percentage,
            current_position=self.current_position,
            time_spent=self.time_spent,
            status=self.status,
        )


class AssessmentAnswerEvent(_UserEvent):
    kind: Literal["assessment_answer"]
    cohort_id: Optional[str] = None
    test_id: str = Field(..., min_length=1)
    attempt_id: str = Field(..., min_length=1)
    lesson_id: Optional[str] = None
    course_id: Optional[str] = None
    unit_id: Optional[str] = None
    title: Optional[str] = None
    answers: List[Dict[str, Any]] = Field(default_factory=list)
    total_questions: Optional[int] = Field(default=None, ge=0)
    questions_attempted: Optional[int] = Field(default=None, ge=0)
    score: Optional[float] = None
    percent_complete: Optional[float] = Field(default=None, ge=0)
    time_spent: Optional[float] = None
    status: Optional[str] = None
    updated_at: Optional[datetime] = None

    def to_attempt_record(self) -> AttemptRecord:
        return AttemptRecord.model_validate(
            self.model_dump(exclude={"kind", "user_id", "tenant_id", "organisation_id"})
        )


SyncEvent = Annotated[
    Union[CourseHierarchyEvent, LessonAttemptEvent, AssessmentAnswerEvent],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[Any] = TypeAdapter(SyncEvent)


def parse_event(payload: Any) -> Union[CourseHierarchyEvent, LessonAttemptEvent, AssessmentAnswerEvent]:
    """Validate a raw webhook body; raises pydantic.ValidationError on unknown kinds or bad shapes."""
    return _event_adapter.validate_python(payload)


__all__ = [
    "AssessmentAnswerEvent",
    "CourseHierarchyEvent",
    "HierarchyLesson",
    "HierarchyModule",
    "LessonAttemptEvent",
    "SyncEvent",
    "parse_event",
]
