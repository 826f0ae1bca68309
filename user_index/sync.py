"""Create-vs-update decisions for user documents.

``SyncOrchestrator`` is the only writer of the ``users`` index. Each call
holds the user's lock for the whole read, fetch, merge and write sequence.
Updates are conditional on the sequence number that was read, so a
concurrent writer elsewhere surfaces as a version conflict and the cycle is
retried a bounded number of times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Tuple, Union

from pydantic import ValidationError

from .config import Settings, get_settings
from .defaults import DEFAULTS, Defaults
from .documents import UserDocument
from .errors import DocumentMissingError, InvalidSyncRequestError, VersionConflictError
from .events import AssessmentAnswerEvent, CourseHierarchyEvent, LessonAttemptEvent
from .fetcher import DataFetcher
from .index.client import SearchPage, UserIndexClient, VersionedDocument
from .index.query import UserSearchRequest, build_search_query, validate_uuid
from .locks import UserLockRegistry, user_locks
from .merger import (
    apply_course_hierarchy,
    apply_lesson_tracks,
    attach_assessment_answers,
    dedupe_lesson_track_ids,
    normalize_profile_fields,
    reconcile_applications,
)
from .telemetry import emit_event

SyncSection = Literal["profile", "applications", "courses", "assessment", "all"]
SECTIONS: Tuple[str, ...] = ("profile", "applications", "courses", "assessment", "all")
SyncAction = Literal["created", "updated", "unchanged"]
SyncEvent = Union[CourseHierarchyEvent, LessonAttemptEvent, AssessmentAnswerEvent]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncResult:
    user_id: str
    section: str
    action: SyncAction
    document: UserDocument
    attempts: int = 1

    def summary(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "section": self.section,
            "action": self.action,
            "attempts": self.attempts,
        }


@dataclass
class _Outcome:
    action: SyncAction
    document: UserDocument


class SyncOrchestrator:
    def __init__(
        self,
        index: UserIndexClient,
        fetcher: DataFetcher,
        *,
        locks: UserLockRegistry = user_locks,
        max_attempts: int = 3,
        defaults: Defaults = DEFAULTS,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self._index = index
        self._fetcher = fetcher
        self._locks = locks
        self._max_attempts = max_attempts
        self._defaults = defaults
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SyncOrchestrator":
        settings = settings or get_settings()
        return cls(
            UserIndexClient.from_settings(settings),
            DataFetcher.from_settings(settings),
            max_attempts=settings.sync_conflict_retries,
        )

    @property
    def index(self) -> UserIndexClient:
        return self._index

    @staticmethod
    def validate_request(user_id: str, section: str) -> Tuple[str, str]:
        """Reject malformed input before any fetch runs."""
        checked = validate_uuid(user_id, "userId")
        normalized = (section or "").strip().lower()
        if normalized not in SECTIONS:
            raise InvalidSyncRequestError(
                f"Unknown section {section!r}; expected one of {', '.join(SECTIONS)}.",
                field="section",
            )
        return checked, normalized

    # Public operations ------------------------------------------------------------------------

    async def sync_user(
        self,
        user_id: str,
        section: str = "all",
        *,
        tenant_id: Optional[str] = None,
        organisation_id: Optional[str] = None,
    ) -> SyncResult:
        """Bring one section (or the whole document) of a user in line with the sources."""
        user_id, section = self.validate_request(user_id, section)

        async def mutate(current: UserDocument) -> Optional[Tuple[UserDocument, Dict[str, Any]]]:
            return await self._refresh(current, section, tenant_id, organisation_id)

        result = await self._write_cycle(user_id, section, mutate, tenant_id=tenant_id, organisation_id=organisation_id)
        emit_event(
            "sync_completed",
            user_id=user_id,
            section=section,
            action=result.action,
            attempts=result.attempts,
        )
        return result

    async def apply_event(self, event: SyncEvent) -> SyncResult:
        """Fold one webhook event into the user's document, creating the document if needed."""
        user_id = validate_uuid(event.user_id, "userId")
        section = "applications"

        async def mutate(current: UserDocument) -> Optional[Tuple[UserDocument, Dict[str, Any]]]:
            working = self._apply_event_to(current, event)
            return self._finish_applications(working)

        result = await self._write_cycle(
            user_id,
            section,
            mutate,
            tenant_id=event.tenant_id,
            organisation_id=event.organisation_id,
            on_create=lambda document: self._apply_event_to(document, event),
        )
        emit_event("sync_event_applied", user_id=user_id, kind=event.kind, action=result.action)
        return result

    async def delete_user(self, user_id: str) -> bool:
        user_id = validate_uuid(user_id, "userId")
        async with self._locks.hold(user_id):
            deleted = await self._index.delete(user_id)
        self._logger.info("Delete of user %s document: %s", user_id, "removed" if deleted else "not found")
        return deleted

    async def get_document(self, user_id: str) -> Optional[UserDocument]:
        user_id = validate_uuid(user_id, "userId")
        source = await self._index.get(user_id)
        if source is None:
            return None
        return UserDocument.model_validate(source)

    async def search(self, request: UserSearchRequest) -> SearchPage:
        query = build_search_query(request)
        return await self._index.search(query, size=request.size, from_=request.from_, sort=request.sort)

    # Write cycle ------------------------------------------------------------------------------

    async def _write_cycle(
        self,
        user_id: str,
        section: str,
        mutate: Callable[[UserDocument], Awaitable[Optional[Tuple[UserDocument, Dict[str, Any]]]]],
        *,
        tenant_id: Optional[str],
        organisation_id: Optional[str],
        on_create: Optional[Callable[[UserDocument], UserDocument]] = None,
    ) -> SyncResult:
        async with self._locks.hold(user_id):
            attempt = 0
            while True:
                attempt += 1
                existing = await self._index.get_versioned(user_id)
                current = self._load(user_id, existing) if existing is not None else None
                if existing is None or current is None:
                    outcome = await self._create(user_id, tenant_id, organisation_id, on_create)
                    return SyncResult(user_id, section, outcome.action, outcome.document, attempt)
                try:
                    change = await mutate(current)
                    if change is None:
                        return SyncResult(user_id, section, "unchanged", current, attempt)
                    document, patch = change
                    await self._index.update(
                        user_id,
                        doc=patch,
                        if_seq_no=existing.seq_no,
                        if_primary_term=existing.primary_term,
                    )
                    return SyncResult(user_id, section, "updated", document, attempt)
                except DocumentMissingError:
                    self._logger.warning("Document for user %s vanished during %s sync; recreating", user_id, section)
                    emit_event("sync_create_fallback", user_id=user_id, section=section)
                    outcome = await self._create(user_id, tenant_id, organisation_id, on_create)
                    return SyncResult(user_id, section, outcome.action, outcome.document, attempt)
                except VersionConflictError as exc:
                    if attempt >= self._max_attempts:
                        raise VersionConflictError(user_id, attempts=attempt) from exc
                    self._logger.info("Version conflict on user %s (attempt %d); retrying", user_id, attempt)
                    emit_event("sync_conflict_retry", user_id=user_id, section=section, attempt=attempt)

    def _load(self, user_id: str, existing: VersionedDocument) -> Optional[UserDocument]:
        try:
            return UserDocument.model_validate(existing.source)
        except ValidationError as exc:
            self._logger.warning("Indexed document for user %s is unreadable; rebuilding: %s", user_id, exc.errors()[:1])
            return None

    async def _create(
        self,
        user_id: str,
        tenant_id: Optional[str],
        organisation_id: Optional[str],
        on_create: Optional[Callable[[UserDocument], UserDocument]],
    ) -> _Outcome:
        document = await self._fetcher.comprehensive_sync(
            user_id, tenant_id=tenant_id, organisation_id=organisation_id
        )
        if on_create is not None:
            document = dedupe_lesson_track_ids(on_create(document), logger=self._logger).recompute()
        await self._index.index(user_id, document.to_payload())
        self._logger.info("Indexed new document for user %s", user_id)
        return _Outcome("created", document)

    # Section refresh --------------------------------------------------------------------------

    async def _refresh(
        self,
        current: UserDocument,
        section: str,
        tenant_id: Optional[str],
        organisation_id: Optional[str],
    ) -> Optional[Tuple[UserDocument, Dict[str, Any]]]:
        user_id = current.user_id
        fetcher = self._fetcher

        if section == "all":
            document = await fetcher.comprehensive_sync(
                user_id, tenant_id=tenant_id, organisation_id=organisation_id, base=current
            )
            return document, document.to_payload()

        working = current.model_copy(deep=True)
        if section == "profile":
            snapshot, failed = await fetcher.isolate(user_id, "profile", fetcher.fetch_profile(user_id), None)
            if failed or snapshot is None:
                return None
            profile = snapshot.profile.model_copy(deep=True)
            profile.custom_fields = normalize_profile_fields(
                snapshot.raw_custom_fields, working.applications, defaults=self._defaults
            )
            working.profile = profile
            working.updated_at = self._clock()
            return working, {"profile": profile.to_payload(), "updatedAt": working.to_payload()["updatedAt"]}

        if section == "applications":
            fresh, failed = await fetcher.isolate(user_id, "applications", fetcher.fetch_applications(user_id), [])
            if failed:
                return None
            working.applications = reconcile_applications(working.applications, fresh, defaults=self._defaults)
        elif section == "courses":
            tracks, failed = await fetcher.isolate(
                user_id, "courses", fetcher.fetch_lesson_progress(user_id, tenant_id, organisation_id), []
            )
            if failed:
                return None
            working.applications = apply_lesson_tracks(working.applications, tracks, defaults=self._defaults)
        elif section == "assessment":
            records, failed = await fetcher.isolate(
                user_id, "assessment", fetcher.fetch_assessment_progress(user_id, tenant_id, organisation_id), []
            )
            if failed:
                return None
            working.applications = attach_assessment_answers(working.applications, records, defaults=self._defaults)
        return self._finish_applications(working)

    def _finish_applications(self, working: UserDocument) -> Tuple[UserDocument, Dict[str, Any]]:
        working.updated_at = self._clock()
        document = dedupe_lesson_track_ids(working, logger=self._logger).recompute()
        payload = document.to_payload()
        return document, {"applications": payload["applications"], "updatedAt": payload["updatedAt"]}

    def _apply_event_to(self, document: UserDocument, event: SyncEvent) -> UserDocument:
        working = document.model_copy(deep=True)
        if isinstance(event, CourseHierarchyEvent):
            working.applications = apply_course_hierarchy(
                working.applications, event.cohort_id, event.to_course(), defaults=self._defaults
            )
        elif isinstance(event, LessonAttemptEvent):
            working.applications = apply_lesson_tracks(
                working.applications, [event.to_lesson_track()], defaults=self._defaults
            )
        elif isinstance(event, AssessmentAnswerEvent):
            working.applications = attach_assessment_answers(
                working.applications, [event.to_attempt_record()], defaults=self._defaults
            )
        return working


__all__ = [
    "SECTIONS",
    "SyncOrchestrator",
    "SyncResult",
    "SyncSection",
]
