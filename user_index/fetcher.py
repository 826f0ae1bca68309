"""Gather the fragments a user document is built from.

Relational reads run on worker threads through ``asyncio.to_thread`` with one
session per read. The LMS and assessment collaborators are called over
``httpx``. ``comprehensive_sync`` runs every fetch concurrently and isolates
failures so one broken source only empties its own fragment.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, TypeVar

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .clients import AssessmentClient, TrackingClient, UpstreamContext
from .config import Settings, get_settings
from .db.session import SessionScope, session_scope
from .defaults import DEFAULTS, Defaults
from .documents import (
    Application,
    CohortDetails,
    PageProgress,
    Profile,
    Progress,
    UserDocument,
    is_filled,
)
from .errors import DocumentNotFoundError, UpstreamUnavailableError
from .form_schema import FieldPageVisitor, parse_form_schema
from .merger import (
    apply_lesson_tracks,
    attach_assessment_answers,
    dedupe_lesson_track_ids,
    normalize_profile_fields,
    reconcile_applications,
)
from .records import AttemptRecord, LessonTrack, ProfileSnapshot, RawCustomField
from .repositories.user_records import (
    FieldValueRow,
    MembershipRow,
    SubmissionRow,
    UserRecordsRepository,
    UserRow,
    user_records,
)
from .telemetry import emit_event

T = TypeVar("T")

PROFILE_TEXT_FIELDS = (
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
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _missing_identity(row: UserRow) -> List[str]:
    missing = []
    for name in ("first_name", "last_name", "email"):
        value = getattr(row, name)
        if value is None or not str(value).strip():
            missing.append(name)
    return missing


class DataFetcher:
    """Read-only collaborator that turns source records into document fragments."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        repository: UserRecordsRepository = user_records,
        session_factory: SessionScope = session_scope,
        tracking: Optional[TrackingClient] = None,
        assessment: Optional[AssessmentClient] = None,
        defaults: Defaults = DEFAULTS,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._session_factory = session_factory
        self._tracking = tracking
        self._assessment = assessment
        self._defaults = defaults
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._visitor = FieldPageVisitor(defaults)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "DataFetcher":
        timeout = settings.upstream_timeout_seconds
        tracking = (
            TrackingClient(settings.lms_service_url, timeout_seconds=timeout)
            if settings.lms_service_url
            else None
        )
        assessment = (
            AssessmentClient(settings.assessment_service_url, timeout_seconds=timeout)
            if settings.assessment_service_url
            else None
        )
        return cls(settings=settings, tracking=tracking, assessment=assessment, **kwargs)

    async def _read(self, query: Callable[..., T], *args: Any) -> T:
        def run() -> T:
            with self._session_factory() as session:
                return query(session, *args)

        return await asyncio.to_thread(run)

    # Upstream context -------------------------------------------------------------------------

    async def upstream_context(
        self,
        user_id: str,
        tenant_id: Optional[str] = None,
        organisation_id: Optional[str] = None,
    ) -> UpstreamContext:
        """Resolve tenant scope: explicit value, then the user's tenant mapping, then the default."""
        resolved_tenant = tenant_id
        if not resolved_tenant:
            try:
                resolved_tenant = await self._read(self._repository.get_tenant_id, user_id)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("Tenant lookup failed for user %s: %s", user_id, exc)
                resolved_tenant = None
        return UpstreamContext(
            tenant_id=resolved_tenant or self._settings.default_tenant_id or self._defaults.tenant_id,
            organisation_id=organisation_id
            or self._settings.default_organisation_id
            or self._defaults.organisation_id,
            token=self._settings.upstream_token,
        )

    def _skip(self, user_id: str, fragment: str, reason: str) -> None:
        self._logger.info("Skipping %s fetch for user %s: %s", fragment, user_id, reason)
        emit_event("sync_fragment_skipped", user_id=user_id, fragment=fragment, reason=reason)

    # Profile ----------------------------------------------------------------------------------

    async def fetch_profile(self, user_id: str) -> ProfileSnapshot:
        row = await self._read(self._repository.get_user, user_id)
        if row is None:
            raise DocumentNotFoundError(f"User {user_id} does not exist.", user_id=user_id)

        missing = _missing_identity(row)
        if missing:
            self._logger.info("User %s is missing %s; re-reading once", user_id, ", ".join(missing))
            reread = await self._read(self._repository.get_user, user_id)
            if reread is not None:
                row = reread

        values = await self._read(self._repository.list_field_values, user_id)
        profile, placeholders = self._build_profile(row)
        if placeholders:
            self._logger.warning("Using placeholder %s for user %s", ", ".join(placeholders), user_id)
        return ProfileSnapshot(
            profile=profile,
            raw_custom_fields=[self._raw_custom_field(value) for value in values],
            created_at=row.created_at,
            updated_at=row.updated_at,
            placeholders_applied=placeholders,
        )

    def _build_profile(self, row: UserRow) -> Tuple[Profile, List[str]]:
        values: Dict[str, Any] = {name: getattr(row, name) for name in PROFILE_TEXT_FIELDS}
        placeholders: List[str] = []
        fallbacks = {
            "first_name": self._defaults.first_name,
            "last_name": self._defaults.last_name,
            "email": self._defaults.placeholder_email(row.user_id),
        }
        for name, fallback in fallbacks.items():
            value = values.get(name)
            if value is None or not str(value).strip():
                values[name] = fallback
                placeholders.append(name)
        profile = Profile(
            user_id=row.user_id,
            dob=row.dob,
            status=row.status or self._defaults.profile_status,
            **values,
        )
        return profile, placeholders

    def _raw_custom_field(self, row: FieldValueRow) -> RawCustomField:
        return RawCustomField(
            field_id=row.field_id,
            name=row.name,
            label=row.label,
            type=row.type,
            value=self._field_value(row.value),
            context=row.context,
            context_type=row.context_type,
        )

    def _field_value(self, value: Any) -> Any:
        if isinstance(value, list):
            return self._defaults.multi_value_separator.join(str(item) for item in value)
        return value

    # Applications -----------------------------------------------------------------------------

    def _application_rows(
        self, session: Session, user_id: str
    ) -> Tuple[List[MembershipRow], List[SubmissionRow], List[FieldValueRow]]:
        return (
            self._repository.list_memberships(session, user_id),
            self._repository.list_submissions(session, user_id),
            self._repository.list_field_values(session, user_id),
        )

    async def fetch_applications(self, user_id: str) -> List[Application]:
        memberships, submissions, values = await self._read(self._application_rows, user_id)
        applications: List[Application] = []
        seen: Set[str] = set()
        for membership in memberships:
            if membership.cohort_id in seen:
                self._logger.warning("Ignoring repeated membership of user %s in cohort %s", user_id, membership.cohort_id)
                continue
            seen.add(membership.cohort_id)
            submission = self._match_submission(user_id, membership.cohort_id, submissions)
            applications.append(self._build_application(user_id, membership, submission, values))
        return applications

    def _match_submission(
        self, user_id: str, cohort_id: str, submissions: List[SubmissionRow]
    ) -> Optional[SubmissionRow]:
        """Submission whose form targets the cohort, else the user's first submission.

        The fallback can attach a form filed for another cohort. It is kept as
        the established behaviour and logged every time it fires.
        """
        for submission in submissions:
            if submission.form_context_id == cohort_id:
                return submission
        if not submissions:
            return None
        fallback = submissions[0]
        self._logger.warning(
            "No form submission targets cohort %s for user %s; falling back to submission %s",
            cohort_id,
            user_id,
            fallback.submission_id,
        )
        return fallback

    def _build_progress(
        self, user_id: str, submission: SubmissionRow, values: List[FieldValueRow]
    ) -> Progress:
        schema = parse_form_schema(submission.form_schema)
        page_of = self._visitor.visit(schema)
        pages: Dict[str, PageProgress] = {name: PageProgress() for name in self._visitor.page_names(schema)}
        unmapped: List[str] = []
        for row in values:
            page_name = page_of.get(row.field_id)
            if page_name is None:
                if not self._defaults.is_profile_context(row.context):
                    unmapped.append(row.field_id)
                continue
            pages.setdefault(page_name, PageProgress()).fields[row.field_id] = self._field_value(row.value)
        if unmapped:
            self._logger.warning(
                "Dropped %d field value(s) not in form %s for user %s: %s",
                len(unmapped),
                submission.form_id,
                user_id,
                ", ".join(unmapped),
            )
        for page in pages.values():
            page.completed = bool(page.fields) and all(is_filled(value) for value in page.fields.values())
        return Progress(pages=pages)

    def _build_application(
        self,
        user_id: str,
        membership: MembershipRow,
        submission: Optional[SubmissionRow],
        values: List[FieldValueRow],
    ) -> Application:
        defaults = self._defaults
        details = CohortDetails(
            cohort_id=membership.cohort_id,
            name=membership.cohort_name or defaults.cohort_name,
            type=membership.cohort_type or defaults.cohort_type,
            status=membership.cohort_status or defaults.cohort_status,
        )
        if submission is None:
            return Application(
                cohort_id=membership.cohort_id,
                cohortmemberstatus=membership.status or defaults.cohort_member_status,
                cohort_details=details,
            )
        submitted = submission.status == defaults.submitted_form_status
        return Application(
            cohort_id=membership.cohort_id,
            form_id=submission.form_id,
            submission_id=submission.submission_id,
            cohortmemberstatus=membership.status or defaults.cohort_member_status,
            formstatus=submission.status or defaults.form_status,
            progress=self._build_progress(user_id, submission, values),
            last_saved_at=_iso(submission.updated_at),
            submitted_at=_iso(submission.updated_at) if submitted else None,
            cohort_details=details,
        )

    # Lesson tracking --------------------------------------------------------------------------

    async def fetch_lesson_progress(
        self,
        user_id: str,
        tenant_id: Optional[str] = None,
        organisation_id: Optional[str] = None,
    ) -> List[LessonTrack]:
        if self._tracking is None:
            self._skip(user_id, "courses", "tracking service not configured")
            return []
        context = await self.upstream_context(user_id, tenant_id, organisation_id)
        if not context.has_token:
            self._skip(user_id, "courses", "missing upstream token")
            return []
        return await self._tracking.fetch_lesson_tracks(user_id, context)

    # Assessments ------------------------------------------------------------------------------

    async def fetch_assessment_progress(
        self,
        user_id: str,
        tenant_id: Optional[str] = None,
        organisation_id: Optional[str] = None,
    ) -> List[AttemptRecord]:
        client = self._assessment
        if client is None:
            self._skip(user_id, "assessment", "assessment service not configured")
            return []
        context = await self.upstream_context(user_id, tenant_id, organisation_id)
        if not context.has_token:
            self._skip(user_id, "assessment", "missing upstream token")
            return []
        attempts = await client.list_attempts(user_id, context)
        records = await asyncio.gather(*(self._attempt_record(client, user_id, raw, context) for raw in attempts))
        return [record for record in records if record is not None]

    async def _attempt_record(
        self, client: AssessmentClient, user_id: str, raw: Dict[str, Any], context: UpstreamContext
    ) -> Optional[AttemptRecord]:
        attempt_id = raw.get("attemptId") or raw.get("id")
        if not attempt_id:
            self._logger.warning("Skipping assessment attempt without id for user %s", user_id)
            return None
        payload = {**raw, "attemptId": str(attempt_id)}
        try:
            payload.update(await client.fetch_answers(str(attempt_id), context))
        except UpstreamUnavailableError as exc:
            self._logger.warning("Answers unavailable for attempt %s of user %s: %s", attempt_id, user_id, exc)
            payload.update({"answers": [], "status": "error"})
        try:
            return AttemptRecord.model_validate(payload)
        except ValidationError as exc:
            self._logger.warning("Skipping malformed attempt %s for user %s: %s", attempt_id, user_id, exc.errors()[:1])
            return None

    # Composition ------------------------------------------------------------------------------

    async def isolate(self, user_id: str, fragment: str, fetch: Awaitable[T], fallback: T) -> Tuple[T, bool]:
        try:
            return await fetch, False
        except DocumentNotFoundError:
            raise
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("Fetching %s for user %s failed; continuing without it: %s", fragment, user_id, exc)
            emit_event("sync_fragment_degraded", user_id=user_id, fragment=fragment, error=exc)
            return fallback, True

    async def comprehensive_sync(
        self,
        user_id: str,
        *,
        tenant_id: Optional[str] = None,
        organisation_id: Optional[str] = None,
        base: Optional[UserDocument] = None,
    ) -> UserDocument:
        """Fetch every fragment and compose a complete document.

        With ``base`` (the indexed document) course progress and synthetic
        assessment applications are carried over, and a degraded profile or
        applications fragment falls back to what is already indexed.
        """
        (snapshot, profile_failed), (fresh_apps, apps_failed), (tracks, _), (attempts, _) = await asyncio.gather(
            self.isolate(user_id, "profile", self.fetch_profile(user_id), None),
            self.isolate(user_id, "applications", self.fetch_applications(user_id), []),
            self.isolate(user_id, "courses", self.fetch_lesson_progress(user_id, tenant_id, organisation_id), []),
            self.isolate(
                user_id, "assessment", self.fetch_assessment_progress(user_id, tenant_id, organisation_id), []
            ),
        )

        if apps_failed and base is not None:
            fresh_apps = base.applications
        applications = reconcile_applications(base.applications, fresh_apps, defaults=self._defaults) if base else fresh_apps
        applications = apply_lesson_tracks(applications, tracks, defaults=self._defaults)
        applications = attach_assessment_answers(applications, attempts, defaults=self._defaults)

        if snapshot is not None:
            profile = snapshot.profile.model_copy(deep=True)
            profile.custom_fields = normalize_profile_fields(
                snapshot.raw_custom_fields, applications, defaults=self._defaults
            )
        elif base is not None:
            profile = base.profile.model_copy(deep=True)
        else:
            profile, _ = self._build_profile(_empty_user_row(user_id))

        created_at = (base.created_at if base else None) or (snapshot.created_at if snapshot else None) or self._clock()
        document = UserDocument(
            user_id=user_id,
            profile=profile,
            applications=applications,
            created_at=created_at,
            updated_at=self._clock(),
        )
        degraded = [name for name, failed in (("profile", profile_failed), ("applications", apps_failed)) if failed]
        if degraded:
            self._logger.info("Composed document for user %s with degraded fragments: %s", user_id, ", ".join(degraded))
        return dedupe_lesson_track_ids(document, logger=self._logger).recompute()


def _empty_user_row(user_id: str) -> UserRow:
    return UserRow(
        user_id=user_id,
        username=None,
        first_name=None,
        middle_name=None,
        last_name=None,
        email=None,
        mobile=None,
        mobile_country_code=None,
        gender=None,
        dob=None,
        country=None,
        address=None,
        district=None,
        state=None,
        pincode=None,
        status=None,
        created_at=None,
        updated_at=None,
    )


__all__ = ["DataFetcher"]
