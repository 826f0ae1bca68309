from __future__ import annotations

import asyncio
from typing import Iterator, List

import pytest

from user_index.documents import Application, CohortDetails, Content, Course, Profile, Tracking, Unit, UserDocument
from user_index.errors import (
    DocumentNotFoundError,
    InvalidSyncRequestError,
    UpstreamUnavailableError,
    VersionConflictError,
)
from user_index.events import parse_event
from user_index.records import LessonTrack
from user_index.telemetry import TelemetryEvent, clear_listeners, register_listener

from fakes import (
    COHORT_A,
    COHORT_B,
    COHORT_C,
    USER_ID,
    FakeAssessment,
    FakeIndexClient,
    FakeRecords,
    FakeTracking,
    eligibility_schema,
    field_value,
    make_fetcher,
    make_orchestrator,
    membership,
    submission,
    user_row,
)


@pytest.fixture
def telemetry_events() -> Iterator[List[TelemetryEvent]]:
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    yield events
    clear_listeners()


def _records() -> FakeRecords:
    records = FakeRecords()
    records.users[USER_ID] = user_row()
    records.memberships[USER_ID] = [membership(COHORT_A)]
    records.submissions[USER_ID] = [submission("sub-a", COHORT_A, eligibility_schema("f-income"))]
    records.field_values[USER_ID] = [
        field_value("f-income", "below 1 lakh"),
        field_value("f-hobby", "chess", context="USERS"),
    ]
    return records


def _tracking() -> FakeTracking:
    return FakeTracking(
        [LessonTrack(lesson_track_id="T1", lesson_id="L1", course_id="C1", cohort_id=COHORT_A, completion_percentage=60)]
    )


def _indexed_document_with_three_applications() -> UserDocument:
    applications = [
        Application(
            cohort_id=cohort_id,
            formstatus="active",
            cohort_details=CohortDetails(cohort_id=cohort_id, name=f"Cohort {number}", type="COHORT"),
            courses=[Course(course_id=f"C{number}", units=[Unit(unit_id="U1")])] if number == 1 else [],
        )
        for number, cohort_id in enumerate([COHORT_A, COHORT_B, COHORT_C], start=1)
    ]
    return UserDocument(
        user_id=USER_ID,
        profile=Profile(user_id=USER_ID, first_name="Old", last_name="Name", email="old@example.org"),
        applications=applications,
    )


def test_first_sync_creates_the_document() -> None:
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(_records(), tracking=_tracking()))

    result = asyncio.run(orchestrator.sync_user(USER_ID, "profile"))

    assert result.action == "created"
    assert ("index", USER_ID) in index.calls
    source = index.source(USER_ID)
    assert source["profile"]["firstName"] == "Asha"
    assert source["applications"][0]["courses"][0]["courseId"] == "C1"
    assert source["createdAt"].startswith("2023-01-10")


def test_full_sync_is_idempotent() -> None:
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(_records(), tracking=_tracking()))

    first = asyncio.run(orchestrator.sync_user(USER_ID, "all"))
    snapshot = index.source(USER_ID)
    second = asyncio.run(orchestrator.sync_user(USER_ID, "all"))

    assert (first.action, second.action) == ("created", "updated")
    assert index.source(USER_ID) == snapshot
    assert second.document.to_payload() == first.document.to_payload()


def test_profile_sync_keeps_applications_and_uses_placeholders() -> None:
    records = _records()
    records.users[USER_ID] = user_row(first_name=None, last_name="", email=None)
    records.memberships[USER_ID] = []
    index = FakeIndexClient()
    asyncio.run(index.index(USER_ID, _indexed_document_with_three_applications().to_payload()))
    orchestrator = make_orchestrator(index, make_fetcher(records))

    result = asyncio.run(orchestrator.sync_user(USER_ID, "profile"))

    assert result.action == "updated"
    source = index.source(USER_ID)
    assert [app["cohortId"] for app in source["applications"]] == [COHORT_A, COHORT_B, COHORT_C]
    profile = source["profile"]
    assert (profile["firstName"], profile["lastName"]) == ("User", "Name")
    assert profile["email"] == f"user-{USER_ID}@example.com"
    assert profile["customFields"][0]["fieldId"] == "f-hobby"


def test_applications_sync_leaves_profile_alone() -> None:
    index = FakeIndexClient()
    asyncio.run(index.index(USER_ID, _indexed_document_with_three_applications().to_payload()))
    orchestrator = make_orchestrator(index, make_fetcher(_records()))

    asyncio.run(orchestrator.sync_user(USER_ID, "applications"))

    source = index.source(USER_ID)
    assert source["profile"]["firstName"] == "Old"
    cohorts = [app["cohortId"] for app in source["applications"]]
    assert cohorts == [COHORT_A]
    assert source["applications"][0]["courses"][0]["courseId"] == "C1"
    assert source["applications"][0]["submissionId"] == "sub-a"


def test_missing_document_during_update_falls_back_to_create(telemetry_events: List[TelemetryEvent]) -> None:
    fetcher = make_fetcher(_records(), tracking=_tracking())
    index = FakeIndexClient()
    asyncio.run(index.index(USER_ID, _indexed_document_with_three_applications().to_payload()))
    index.missing_on_update = True
    orchestrator = make_orchestrator(index, fetcher)

    result = asyncio.run(orchestrator.sync_user(USER_ID, "courses"))

    expected = asyncio.run(fetcher.comprehensive_sync(USER_ID)).to_payload()
    assert result.action == "created"
    assert index.source(USER_ID) == expected
    assert result.document.to_payload() == expected
    assert [event.name for event in telemetry_events].count("sync_create_fallback") == 1


def test_version_conflict_is_retried() -> None:
    index = FakeIndexClient()
    asyncio.run(index.index(USER_ID, _indexed_document_with_three_applications().to_payload()))
    index.conflicts_remaining = 1
    orchestrator = make_orchestrator(index, make_fetcher(_records()))

    result = asyncio.run(orchestrator.sync_user(USER_ID, "profile"))

    assert result.action == "updated"
    assert result.attempts == 2
    assert index.source(USER_ID)["profile"]["firstName"] == "Asha"


def test_version_conflict_surfaces_after_bounded_retries() -> None:
    index = FakeIndexClient()
    asyncio.run(index.index(USER_ID, _indexed_document_with_three_applications().to_payload()))
    index.conflicts_remaining = 10
    orchestrator = make_orchestrator(index, make_fetcher(_records()), max_attempts=3)

    with pytest.raises(VersionConflictError) as excinfo:
        asyncio.run(orchestrator.sync_user(USER_ID, "profile"))

    assert excinfo.value.attempts == 3
    assert [name for name, _ in index.calls].count("update") == 3


def test_failed_fragment_leaves_document_unchanged(telemetry_events: List[TelemetryEvent]) -> None:
    index = FakeIndexClient()
    asyncio.run(index.index(USER_ID, _indexed_document_with_three_applications().to_payload()))
    before = index.source(USER_ID)
    tracking = FakeTracking(error=UpstreamUnavailableError("tracking", "GET timed out"))
    orchestrator = make_orchestrator(index, make_fetcher(_records(), tracking=tracking))

    result = asyncio.run(orchestrator.sync_user(USER_ID, "courses"))

    assert result.action == "unchanged"
    assert ("update", USER_ID) not in index.calls
    assert index.source(USER_ID) == before
    assert any(event.name == "sync_fragment_degraded" for event in telemetry_events)


def test_invalid_requests_are_rejected_before_any_fetch() -> None:
    records = _records()
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(records))

    with pytest.raises(InvalidSyncRequestError):
        asyncio.run(orchestrator.sync_user("not-a-uuid", "all"))
    with pytest.raises(InvalidSyncRequestError) as excinfo:
        asyncio.run(orchestrator.sync_user(USER_ID, "grades"))

    assert excinfo.value.field == "section"
    assert index.calls == []
    assert records.calls == []


def test_sync_for_unknown_user_is_not_found() -> None:
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(FakeRecords()))

    with pytest.raises(DocumentNotFoundError):
        asyncio.run(orchestrator.sync_user(USER_ID, "all"))
    assert index.documents == {}


def test_concurrent_syncs_for_one_user_are_serialized() -> None:
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(_records(), tracking=_tracking()))

    async def scenario():
        return await asyncio.gather(
            orchestrator.sync_user(USER_ID, "all"),
            orchestrator.sync_user(USER_ID, "all"),
        )

    results = asyncio.run(scenario())

    assert sorted(result.action for result in results) == ["created", "updated"]
    assert [name for name, _ in index.calls].count("index") == 1


def test_hierarchy_event_creates_then_merges_idempotently() -> None:
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(_records()))
    event = parse_event(
        {
            "kind": "course_hierarchy",
            "userId": USER_ID,
            "cohortId": COHORT_A,
            "courseId": "C1",
            "name": "Digital Skills",
            "modules": [{"moduleId": "M1", "name": "Basics", "lessons": [{"lessonId": "L1", "name": "Welcome"}]}],
        }
    )

    first = asyncio.run(orchestrator.apply_event(event))
    second = asyncio.run(orchestrator.apply_event(event))

    assert (first.action, second.action) == ("created", "updated")
    courses = index.source(USER_ID)["applications"][0]["courses"]
    assert [course["courseId"] for course in courses] == ["C1"]
    assert courses[0]["units"][0]["contents"][0]["title"] == "Welcome"


def test_hierarchy_event_without_cohort_joins_the_application_holding_the_course() -> None:
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(_records(), tracking=_tracking()))
    asyncio.run(orchestrator.sync_user(USER_ID, "all"))
    event = parse_event(
        {
            "kind": "course_hierarchy",
            "userId": USER_ID,
            "courseId": "C1",
            "name": "Digital Skills",
            "modules": [{"moduleId": "M1", "name": "Basics", "lessons": [{"lessonId": "L9", "name": "Recap"}]}],
        }
    )

    result = asyncio.run(orchestrator.apply_event(event))

    assert result.action == "updated"
    applications = index.source(USER_ID)["applications"]
    assert [app["cohortId"] for app in applications] == [COHORT_A]
    courses = [course for app in applications for course in app["courses"] if course["courseId"] == "C1"]
    assert len(courses) == 1
    assert courses[0]["courseTitle"] == "Digital Skills"


def test_lesson_attempt_event_updates_tracking() -> None:
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(_records(), tracking=_tracking()))
    asyncio.run(orchestrator.sync_user(USER_ID, "all"))
    event = parse_event(
        {
            "kind": "lesson_attempt",
            "userId": USER_ID,
            "cohortId": COHORT_A,
            "courseId": "C1",
            "lessonId": "L1",
            "attemptId": "T1",
            "completionPercentage": 100,
        }
    )

    result = asyncio.run(orchestrator.apply_event(event))

    assert result.action == "updated"
    content = index.source(USER_ID)["applications"][0]["courses"][0]["units"][0]["contents"][0]
    assert (content["lessonTrackId"], content["status"]) == ("T1", "completed")
    assert content["tracking"]["percentComplete"] == 100


def test_delete_and_get_document() -> None:
    index = FakeIndexClient()
    orchestrator = make_orchestrator(index, make_fetcher(_records()))
    asyncio.run(orchestrator.sync_user(USER_ID, "all"))

    document = asyncio.run(orchestrator.get_document(USER_ID))
    assert document is not None and document.user_id == USER_ID

    assert asyncio.run(orchestrator.delete_user(USER_ID)) is True
    assert asyncio.run(orchestrator.delete_user(USER_ID)) is False
    assert asyncio.run(orchestrator.get_document(USER_ID)) is None


def _indexed_document_with_tests(*contents: Content) -> UserDocument:
    document = _indexed_document_with_three_applications()
    document.applications[0].courses = [Course(course_id="C1", units=[Unit(unit_id="U1", contents=list(contents))])]
    return document.recompute()


def _indexed_contents(index: FakeIndexClient) -> dict:
    contents = index.source(USER_ID)["applications"][0]["courses"][0]["units"][0]["contents"]
    return {content["contentId"]: content for content in contents}


def test_assessment_sync_sets_content_status_from_percent() -> None:
    index = FakeIndexClient()
    indexed = _indexed_document_with_tests(
        Content(content_id="Q100"),
        Content(content_id="Q45"),
        Content(content_id="Q0", tracking=Tracking(percent_complete=30)),
    )
    asyncio.run(index.index(USER_ID, indexed.to_payload()))
    assessment = FakeAssessment(
        attempts=[
            {"attemptId": "a1", "testId": "Q100", "percentComplete": 100},
            {"attemptId": "a2", "testId": "Q45", "percentComplete": 45},
            {"attemptId": "a3", "testId": "Q0", "percentComplete": 0},
        ],
        answers={"a1": {"answers": [{"questionId": "q1", "submittedAnswer": "B"}], "score": 9}},
    )
    orchestrator = make_orchestrator(index, make_fetcher(_records(), assessment=assessment))

    result = asyncio.run(orchestrator.sync_user(USER_ID, "assessment"))

    assert result.action == "updated"
    contents = _indexed_contents(index)
    statuses = {content_id: content["status"] for content_id, content in contents.items()}
    assert statuses == {"Q100": "completed", "Q45": "in_progress", "Q0": "not_started"}
    assert contents["Q100"]["tracking"]["score"] == 9
    assert [answer["questionId"] for answer in contents["Q100"]["tracking"]["answers"]] == ["q1"]
    source = index.source(USER_ID)
    assert source["profile"]["firstName"] == "Old"
    assert [app["cohortId"] for app in source["applications"]] == [COHORT_A, COHORT_B, COHORT_C]


def test_assessment_sync_with_failed_answers_keeps_indexed_progress() -> None:
    index = FakeIndexClient()
    completed = Content(content_id="TEST1", tracking=Tracking(percent_complete=100, score=8, total_questions=10))
    asyncio.run(index.index(USER_ID, _indexed_document_with_tests(completed).to_payload()))
    assessment = FakeAssessment(attempts=[{"attemptId": "a1", "testId": "TEST1"}], failing={"a1"})
    orchestrator = make_orchestrator(index, make_fetcher(_records(), assessment=assessment))

    asyncio.run(orchestrator.sync_user(USER_ID, "assessment"))

    content = _indexed_contents(index)["TEST1"]
    assert content["status"] == "completed"
    assert content["tracking"]["percentComplete"] == 100
    assert (content["tracking"]["score"], content["tracking"]["totalQuestions"]) == (8, 10)


def test_assessment_sync_with_unreachable_service_is_unchanged(telemetry_events: List[TelemetryEvent]) -> None:
    index = FakeIndexClient()
    asyncio.run(index.index(USER_ID, _indexed_document_with_tests(Content(content_id="Q1")).to_payload()))
    before = index.source(USER_ID)
    assessment = FakeAssessment(error=UpstreamUnavailableError("assessment", "GET /attempts timed out"))
    orchestrator = make_orchestrator(index, make_fetcher(_records(), assessment=assessment))

    result = asyncio.run(orchestrator.sync_user(USER_ID, "assessment"))

    assert result.action == "unchanged"
    assert ("update", USER_ID) not in index.calls
    assert index.source(USER_ID) == before
    degraded = [event for event in telemetry_events if event.name == "sync_fragment_degraded"]
    assert [event.payload["fragment"] for event in degraded] == ["assessment"]
