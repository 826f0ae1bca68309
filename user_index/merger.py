"""Pure reconciliation of fetched fragments against an indexed user document.

Every function here works on deep copies and returns new objects, so a sync
that is cancelled before its write leaves nothing half-applied. Array
elements are reconciled here, by id; ``deep_merge`` is the only policy used
for everything else (objects merge key by key, arrays are replaced).
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .defaults import DEFAULTS, Defaults
from .documents import (
    Answer,
    Application,
    CohortDetails,
    Content,
    Course,
    CustomField,
    Tracking,
    Unit,
    UserDocument,
)
from .records import AttemptRecord, LessonTrack, RawCustomField

_default_logger = logging.getLogger(__name__)


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``patch`` over ``base``: nested objects merge recursively, any other value replaces."""
    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _copy_all(items: Iterable[Any]) -> List[Any]:
    return [item.model_copy(deep=True) for item in items]


# Course hierarchy ---------------------------------------------------------------------------


def merge_course_hierarchy(existing_courses: Sequence[Course], incoming: Course) -> List[Course]:
    """Upsert ``incoming`` by courseId/unitId/contentId without touching existing tracking."""
    courses = _copy_all(existing_courses)
    current = next((course for course in courses if course.course_id == incoming.course_id), None)
    if current is None:
        courses.append(incoming.model_copy(deep=True))
        return courses

    if incoming.course_title:
        current.course_title = incoming.course_title
    for new_unit in incoming.units:
        unit = current.find_unit(new_unit.unit_id)
        if unit is None:
            current.units.append(new_unit.model_copy(deep=True))
            continue
        if new_unit.unit_title:
            unit.unit_title = new_unit.unit_title
        for new_content in new_unit.contents:
            content = next((item for item in unit.contents if item.content_id == new_content.content_id), None)
            if content is None:
                unit.contents.append(new_content.model_copy(deep=True))
                continue
            if new_content.title:
                content.title = new_content.title
            content.type = new_content.type
            if not content.lesson_id and new_content.lesson_id:
                content.lesson_id = new_content.lesson_id
    return courses


# Application resolution ---------------------------------------------------------------------


def placeholder_application(cohort_id: str, *, defaults: Defaults = DEFAULTS) -> Application:
    return Application(
        cohort_id=cohort_id,
        cohortmemberstatus=defaults.enrolled_member_status,
        formstatus=defaults.form_status,
        cohort_details=CohortDetails(
            cohort_id=cohort_id,
            name=defaults.cohort_name,
            type=defaults.cohort_type,
            status=defaults.cohort_status,
        ),
    )


def resolve_application(
    applications: List[Application],
    *,
    cohort_id: Optional[str],
    course_id: str,
    defaults: Defaults = DEFAULTS,
) -> Application:
    """Pick the application a course belongs to, appending a placeholder when none fits.

    Order: explicit cohortId, an application already holding the course, the
    first application when no cohortId was given, then a placeholder keyed by
    cohortId (or courseId).
    """
    if cohort_id:
        match = next((app for app in applications if app.cohort_id == cohort_id), None)
        if match is not None:
            return match
    holder = next((app for app in applications if app.find_course(course_id) is not None), None)
    if holder is not None:
        return holder
    if applications and not cohort_id:
        return applications[0]
    created = placeholder_application(cohort_id or course_id, defaults=defaults)
    applications.append(created)
    return created


def apply_course_hierarchy(
    applications: Sequence[Application],
    cohort_id: Optional[str],
    hierarchy: Course,
    *,
    defaults: Defaults = DEFAULTS,
) -> List[Application]:
    result = _copy_all(applications)
    target = resolve_application(result, cohort_id=cohort_id, course_id=hierarchy.course_id, defaults=defaults)
    target.courses = merge_course_hierarchy(target.courses, hierarchy)
    return result


# Lesson tracks ------------------------------------------------------------------------------


def _track_tracking(track: LessonTrack, previous: Optional[Tracking] = None) -> Tracking:
    tracking = previous.model_copy(deep=True) if previous is not None else Tracking()
    tracking.time_spent = track.time_spent
    tracking.current_position = track.current_position
    tracking.last_position = track.current_position
    tracking.percent_complete = max(0.0, track.completion_percentage)
    return tracking


def _pick_unit(course: Course, track: LessonTrack, defaults: Defaults) -> Unit:
    if track.unit_id:
        unit = course.find_unit(track.unit_id)
        if unit is None:
            unit = Unit(
                unit_id=track.unit_id,
                unit_title=track.unit_title or defaults.unit_title_template.format(unit_id=track.unit_id),
            )
            course.units.append(unit)
        return unit
    holder = next(
        (unit for unit in course.units if any(item.content_id == track.lesson_id for item in unit.contents)),
        None,
    )
    if holder is not None:
        return holder
    if course.units:
        return course.units[0]
    unit = Unit(unit_id=defaults.unit_id, unit_title=defaults.unit_title)
    course.units.append(unit)
    return unit


def apply_lesson_track(course: Course, track: LessonTrack, *, defaults: Defaults = DEFAULTS) -> None:
    """Record one lesson attempt on ``course`` in place.

    A content node is updated only when it carries no lessonTrackId or the
    same one; a different attempt on the same lesson gets its own node and is
    reconciled later by ``dedupe_lesson_track_ids``.
    """
    for unit in course.units:
        for content in unit.contents:
            if content.content_id != track.lesson_id:
                continue
            if content.lesson_track_id and content.lesson_track_id != track.lesson_track_id:
                continue
            content.tracking = _track_tracking(track, content.tracking)
            if not content.lesson_track_id:
                content.lesson_track_id = track.lesson_track_id
            if not content.lesson_id:
                content.lesson_id = track.lesson_id
            content.refresh_status()
            return

    unit = _pick_unit(course, track, defaults)
    unit.contents.append(
        Content(
            content_id=track.lesson_id,
            lesson_id=track.lesson_id,
            lesson_track_id=track.lesson_track_id,
            type=track.content_type or defaults.content_type,
            title=track.lesson_title or defaults.content_title_template.format(content_id=track.lesson_id),
            tracking=_track_tracking(track),
        )
    )


def apply_lesson_tracks(
    applications: Sequence[Application],
    tracks: Iterable[LessonTrack],
    *,
    defaults: Defaults = DEFAULTS,
) -> List[Application]:
    result = _copy_all(applications)
    for track in tracks:
        application = resolve_application(
            result, cohort_id=track.cohort_id, course_id=track.course_id, defaults=defaults
        )
        course = application.find_course(track.course_id)
        if course is None:
            course = Course(
                course_id=track.course_id,
                course_title=track.course_title
                or defaults.course_title_template.format(course_id=track.course_id),
            )
            application.courses.append(course)
        elif track.course_title and not course.course_title:
            course.course_title = track.course_title
        apply_lesson_track(course, track, defaults=defaults)
    return result


# Dedup --------------------------------------------------------------------------------------


def _lesson_key(content: Content) -> Tuple[str, str]:
    return content.content_id, content.lesson_id or content.content_id


def _prefer(candidate: Content, incumbent: Content) -> bool:
    """True when ``candidate`` should replace ``incumbent`` for the same lesson key."""
    candidate_tracked = bool(candidate.lesson_track_id)
    incumbent_tracked = bool(incumbent.lesson_track_id)
    if candidate_tracked != incumbent_tracked:
        return candidate_tracked
    return candidate.tracking.percent_complete > incumbent.tracking.percent_complete


def dedupe_lesson_track_ids(
    document: UserDocument,
    *,
    logger: Optional[logging.Logger] = None,
) -> UserDocument:
    """Collapse duplicate lesson nodes so each lessonTrackId appears at most once.

    Pass one picks a winner per (contentId, lessonId) within each course and
    then hands every lessonTrackId to the most complete winner carrying it.
    Pass two drops the losing nodes and any unit left empty.
    """
    log = logger or _default_logger
    result = document.model_copy(deep=True)

    winners: List[Content] = []
    for application in result.applications:
        for course in application.courses:
            best: Dict[Tuple[str, str], Content] = {}
            for unit in course.units:
                for content in unit.contents:
                    key = _lesson_key(content)
                    incumbent = best.get(key)
                    if incumbent is None or _prefer(content, incumbent):
                        best[key] = content
            winners.extend(best.values())

    seen_track_ids: set[str] = set()
    for content in sorted(winners, key=lambda item: -item.tracking.percent_complete):
        track_id = content.lesson_track_id
        if not track_id:
            continue
        if track_id in seen_track_ids:
            log.warning("Stripping repeated lessonTrackId %s from content %s", track_id, content.content_id)
            content.lesson_track_id = None
        else:
            seen_track_ids.add(track_id)

    keep = {id(content) for content in winners}
    removed = 0
    for application in result.applications:
        for course in application.courses:
            for unit in course.units:
                before = len(unit.contents)
                unit.contents = [content for content in unit.contents if id(content) in keep]
                removed += before - len(unit.contents)
            course.units = [unit for unit in course.units if unit.contents]
    if removed:
        log.info("Removed %d duplicate lesson node(s) for user %s", removed, result.user_id)
    return result


# Assessments --------------------------------------------------------------------------------


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value) if isinstance(value, (dict, list)) else str(value)


def normalize_submitted_answer(value: Any) -> Any:
    """Reduce the answer shapes the assessment service emits to ``str`` or ``list[str]``."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("{", "["):
            try:
                return normalize_submitted_answer(json.loads(stripped))
            except ValueError:
                return value
        return value
    if isinstance(value, list):
        flattened: List[str] = []
        for item in value:
            normalized = normalize_submitted_answer(item)
            if isinstance(normalized, list):
                flattened.extend(normalized)
            elif normalized != "":
                flattened.append(normalized)
        return flattened
    if isinstance(value, Mapping):
        if "selectedOptionIds" in value:
            options = value.get("selectedOptionIds") or []
            if not isinstance(options, list):
                options = [options]
            return [_as_text(option) for option in options]
        text = value.get("text")
        if text not in (None, ""):
            return _as_text(text)
        if "answer" in value:
            return normalize_submitted_answer(value.get("answer"))
        return _as_text(value)
    return _as_text(value)


def normalize_answer(raw: Mapping[str, Any], *, defaults: Defaults = DEFAULTS) -> Optional[Answer]:
    question_id = raw.get("questionId") or raw.get("question_id") or raw.get("id")
    if not question_id:
        return None
    if "submittedAnswer" in raw:
        submitted = raw.get("submittedAnswer")
    elif "answer" in raw:
        submitted = raw.get("answer")
    else:
        submitted = raw.get("response")
    return Answer(
        question_id=str(question_id),
        type=str(raw.get("type") or raw.get("questionType") or defaults.answer_type),
        submitted_answer=normalize_submitted_answer(submitted),
        score=raw.get("score"),
        review_status=raw.get("reviewStatus") or raw.get("review_status"),
    )


def _recency(record: AttemptRecord) -> datetime:
    stamp = record.updated_at
    if stamp is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=timezone.utc)
    return stamp


def _latest(records: Iterable[AttemptRecord]) -> Optional[AttemptRecord]:
    latest: Optional[AttemptRecord] = None
    for record in records:
        if latest is None or _recency(record) >= _recency(latest):
            latest = record
    return latest


def _apply_attempt(content: Content, record: AttemptRecord, defaults: Defaults) -> None:
    tracking = content.tracking
    # Unreported summary values keep what is already indexed.
    if record.questions_attempted is not None:
        tracking.questions_attempted = record.questions_attempted
    if record.total_questions is not None:
        tracking.total_questions = record.total_questions
    if record.score is not None:
        tracking.score = record.score
    if record.percent_complete is not None:
        tracking.percent_complete = max(0.0, record.percent_complete)
    if record.time_spent is not None:
        tracking.time_spent = record.time_spent
    if not record.answers_failed:
        answers = [normalize_answer(raw, defaults=defaults) for raw in record.answers]
        tracking.answers = [answer for answer in answers if answer is not None]
    content.refresh_status()


def _assessment_application(record: AttemptRecord, defaults: Defaults) -> Application:
    test_id = record.test_id
    content = Content(
        content_id=test_id,
        lesson_id=record.lesson_id,
        type=defaults.assessment_content_type,
        title=record.title or defaults.assessment_title_template.format(test_id=test_id),
    )
    _apply_attempt(content, record, defaults)
    return Application(
        cohort_id=test_id,
        cohortmemberstatus=defaults.enrolled_member_status,
        formstatus=defaults.form_status,
        cohort_details=CohortDetails(
            cohort_id=test_id,
            name=defaults.assessment_cohort_name_template.format(test_id=test_id),
            type=defaults.assessment_cohort_type,
            status=defaults.cohort_status,
        ),
        courses=[
            Course(
                course_id=test_id,
                course_title=defaults.assessment_title_template.format(test_id=test_id),
                units=[
                    Unit(
                        unit_id=test_id,
                        unit_title=defaults.assessment_unit_title_template.format(test_id=test_id),
                        contents=[content],
                    )
                ],
            )
        ],
    )


def attach_assessment_answers(
    applications: Sequence[Application],
    records: Sequence[AttemptRecord],
    *,
    defaults: Defaults = DEFAULTS,
) -> List[Application]:
    """Copy the latest matching attempt onto each content node.

    Attempts that match no content become a synthetic ASSESSMENT application
    keyed by testId. An attempt whose answers could not be fetched updates the
    scores but keeps the answers already indexed.
    """
    result = _copy_all(applications)
    matched: set[str] = set()
    for application in result:
        for course in application.courses:
            for unit in course.units:
                for content in unit.contents:
                    candidates = [record for record in records if content.content_id in record.match_keys()]
                    record = _latest(candidates)
                    if record is None:
                        continue
                    _apply_attempt(content, record, defaults)
                    matched.update(candidate.attempt_id for candidate in candidates)

    unmatched: Dict[str, List[AttemptRecord]] = {}
    for record in records:
        if record.attempt_id not in matched:
            unmatched.setdefault(record.test_id, []).append(record)
    for test_id, candidates in unmatched.items():
        latest = _latest(candidates)
        if latest is None:
            continue
        existing = next((app for app in result if app.cohort_id == test_id), None)
        synthetic = _assessment_application(latest, defaults)
        if existing is None:
            result.append(synthetic)
        else:
            existing.courses = merge_course_hierarchy(existing.courses, synthetic.courses[0])
            for course in existing.courses:
                for unit in course.units:
                    for content in unit.contents:
                        if content.content_id == test_id:
                            _apply_attempt(content, latest, defaults)
    return result


# Profile and applications -------------------------------------------------------------------


def _custom_field_value(value: Any, defaults: Defaults) -> Any:
    if isinstance(value, list):
        return defaults.multi_value_separator.join(_as_text(item) for item in value)
    return value


def normalize_profile_fields(
    raw_custom_fields: Iterable[RawCustomField],
    applications: Sequence[Application],
    *,
    defaults: Defaults = DEFAULTS,
) -> List[CustomField]:
    """Keep profile-scoped custom fields only, projected to the compact indexed shape."""
    excluded: set[str] = set()
    for application in applications:
        excluded.update(application.field_ids())

    fields: List[CustomField] = []
    seen: set[str] = set()
    for raw in raw_custom_fields:
        if raw.field_id in excluded or raw.field_id in seen:
            continue
        if not defaults.is_profile_context(raw.context):
            continue
        seen.add(raw.field_id)
        fields.append(
            CustomField(
                field_id=raw.field_id,
                code=raw.name,
                label=raw.label,
                type=raw.type,
                value=_custom_field_value(raw.value, defaults),
            )
        )
    return fields


def reconcile_applications(
    existing: Sequence[Application],
    fresh: Sequence[Application],
    *,
    defaults: Defaults = DEFAULTS,
) -> List[Application]:
    """Refresh form and cohort data while keeping indexed course progress.

    Fresh applications win field by field; their courses fall back to the
    indexed ones for the same cohort. Indexed applications with no fresh
    counterpart survive only if they are synthetic assessments or still hold
    course progress.
    """
    prior_by_cohort = {application.cohort_id: application for application in existing}
    result: List[Application] = []
    fresh_ids: set[str] = set()
    for application in fresh:
        if application.cohort_id in fresh_ids:
            continue
        fresh_ids.add(application.cohort_id)
        refreshed = application.model_copy(deep=True)
        prior = prior_by_cohort.get(application.cohort_id)
        if prior is not None and not refreshed.courses:
            refreshed.courses = _copy_all(prior.courses)
        result.append(refreshed)
    for application in existing:
        if application.cohort_id in fresh_ids:
            continue
        if application.cohort_details.type == defaults.assessment_cohort_type or application.courses:
            result.append(application.model_copy(deep=True))
    return result


__all__ = [
    "apply_course_hierarchy",
    "apply_lesson_track",
    "apply_lesson_tracks",
    "attach_assessment_answers",
    "deep_merge",
    "dedupe_lesson_track_ids",
    "merge_course_hierarchy",
    "normalize_answer",
    "normalize_profile_fields",
    "normalize_submitted_answer",
    "placeholder_application",
    "reconcile_applications",
    "resolve_application",
]
