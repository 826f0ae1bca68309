"""Pydantic models for the per-user search document.

Python attributes are snake_case; the indexed JSON keeps the camelCase keys
the ``users`` index has always used. Unknown keys already present on an
indexed node are kept (``extra="allow"``) so a round-trip never drops data.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ContentStatus = Literal["not_started", "in_progress", "completed"]


def round_half_up(value: float) -> int:
    """Round like the index consumers do (0.5 always rounds up)."""
    return int(math.floor(value + 0.5))


def completion_percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return max(0, min(100, round_half_up(completed / total * 100)))


def status_for_percent(percent_complete: float) -> ContentStatus:
    if percent_complete >= 100:
        return "completed"
    if percent_complete > 0:
        return "in_progress"
    return "not_started"


def is_filled(value: Any) -> bool:
    return value is not None and value != ""


class DocumentNode(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Answer(DocumentNode):
    question_id: str
    type: str = "unknown"
    submitted_answer: Any = None
    score: Optional[float] = None
    review_status: Optional[str] = None


class Tracking(DocumentNode):
    percent_complete: float = Field(default=0, ge=0)
    current_position: float = 0
    last_position: float = 0
    time_spent: float = 0
    questions_attempted: int = 0
    total_questions: int = 0
    score: float = 0
    answers: List[Answer] = Field(default_factory=list)

    @field_validator("percent_complete", mode="before")
    @classmethod
    def _clamp_percent(cls, value: Any) -> Any:
        if value is None:
            return 0
        if isinstance(value, (int, float)) and value < 0:
            return 0
        return value

    @field_validator(
        "current_position",
        "last_position",
        "time_spent",
        "questions_attempted",
        "total_questions",
        "score",
        mode="before",
    )
    @classmethod
    def _zero_when_missing(cls, value: Any) -> Any:
        return 0 if value is None else value


class Content(DocumentNode):
    content_id: str
    lesson_id: Optional[str] = None
    lesson_track_id: Optional[str] = None
    type: str = "video"
    title: str = ""
    status: ContentStatus = "not_started"
    tracking: Tracking = Field(default_factory=Tracking)

    @model_validator(mode="after")
    def _derive_status(self) -> "Content":
        self.refresh_status()
        return self

    def refresh_status(self) -> None:
        self.status = status_for_percent(self.tracking.percent_complete)


class Unit(DocumentNode):
    unit_id: str
    unit_title: str = ""
    progress: int = 0
    contents: List[Content] = Field(default_factory=list)


class Course(DocumentNode):
    course_id: str
    course_title: str = ""
    progress: int = 0
    units: List[Unit] = Field(default_factory=list)

    def find_unit(self, unit_id: str) -> Optional[Unit]:
        return next((unit for unit in self.units if unit.unit_id == unit_id), None)


class PageProgress(DocumentNode):
    completed: bool = False
    fields: Dict[str, Any] = Field(default_factory=dict)


class OverallProgress(DocumentNode):
    completed: int = 0
    total: int = 0


class Progress(DocumentNode):
    pages: Dict[str, PageProgress] = Field(default_factory=dict)
    overall: OverallProgress = Field(default_factory=OverallProgress)


class CohortDetails(DocumentNode):
    cohort_id: Optional[str] = None
    name: str = ""
    type: Optional[str] = None
    status: Optional[str] = None


class Application(DocumentNode):
    cohort_id: str
    form_id: Optional[str] = None
    submission_id: Optional[str] = None
    cohortmemberstatus: Optional[str] = None
    formstatus: Optional[str] = None
    completion_percentage: int = Field(default=0, ge=0, le=100)
    progress: Progress = Field(default_factory=Progress)
    last_saved_at: Optional[str] = None
    submitted_at: Optional[str] = None
    cohort_details: CohortDetails = Field(default_factory=CohortDetails)
    courses: List[Course] = Field(default_factory=list)

    @model_validator(mode="after")
    def _derive_completion(self) -> "Application":
        self.refresh_completion()
        return self

    def refresh_completion(self) -> None:
        """Recompute ``overall`` from the pages and ``completionPercentage`` from ``overall``."""
        pages = self.progress.pages
        if pages:
            total = sum(len(page.fields) for page in pages.values())
            completed = sum(
                1 for page in pages.values() for value in page.fields.values() if is_filled(value)
            )
            self.progress.overall = OverallProgress(completed=completed, total=total)
        overall = self.progress.overall
        self.completion_percentage = completion_percentage(overall.completed, overall.total)

    def find_course(self, course_id: str) -> Optional[Course]:
        return next((course for course in self.courses if course.course_id == course_id), None)

    def field_ids(self) -> set[str]:
        return {field_id for page in self.progress.pages.values() for field_id in page.fields}


class CustomField(DocumentNode):
    field_id: str
    code: Optional[str] = None
    label: Optional[str] = None
    type: Optional[str] = None
    value: Any = None


class Profile(DocumentNode):
    user_id: str
    username: str = ""
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    email: str = ""
    mobile: str = ""
    mobile_country_code: str = Field(default="", alias="mobile_country_code")
    gender: str = ""
    dob: Optional[str] = None
    country: str = ""
    address: str = ""
    district: str = ""
    state: str = ""
    pincode: str = ""
    status: str = "active"
    custom_fields: List[CustomField] = Field(default_factory=list)

    @field_validator(
        "username",
        "first_name",
        "middle_name",
        "last_name",
        "email",
        "mobile",
        "mobile_country_code",
        "gender",
        "country",
        "address",
        "district",
        "state",
        "pincode",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class UserDocument(DocumentNode):
    user_id: str
    profile: Profile
    applications: List[Application] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_application(self, cohort_id: str) -> Optional[Application]:
        return next((app for app in self.applications if app.cohort_id == cohort_id), None)

    def iter_contents(self) -> Iterator[Tuple[Application, Course, Unit, Content]]:
        for application in self.applications:
            for course in application.courses:
                for unit in course.units:
                    for content in unit.contents:
                        yield application, course, unit, content

    def recompute(self) -> "UserDocument":
        """Re-derive every computed field in place before the document is written."""
        for application in self.applications:
            application.refresh_completion()
            for course in application.courses:
                for unit in course.units:
                    for content in unit.contents:
                        content.refresh_status()
                    unit.progress = _mean_percent(
                        [content.tracking.percent_complete for content in unit.contents]
                    )
                course.progress = _mean_percent([unit.progress for unit in course.units])
        return self


def _mean_percent(values: List[float]) -> int:
    if not values:
        return 0
    return max(0, min(100, round_half_up(sum(min(value, 100) for value in values) / len(values))))


__all__ = [
    "Answer",
    "Application",
    "CohortDetails",
    "Content",
    "ContentStatus",
    "Course",
    "CustomField",
    "DocumentNode",
    "OverallProgress",
    "PageProgress",
    "Profile",
    "Progress",
    "Tracking",
    "Unit",
    "UserDocument",
    "completion_percentage",
    "is_filled",
    "round_half_up",
    "status_for_percent",
]
