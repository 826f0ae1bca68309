"""Repository and fetcher reads against a real SQLite copy of the user tables."""

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from pathlib import Path
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from user_index.config import get_settings
from user_index.db.base import Base
from user_index.db.models import (
    CohortMemberModel,
    CohortModel,
    FieldModel,
    FieldValueModel,
    FormModel,
    FormSubmissionModel,
    UserModel,
    UserTenantMappingModel,
)
from user_index.db.session import SessionProvider, dispose_engine, engine_options, get_engine, session_scope
from user_index.errors import ConfigurationError
from user_index.fetcher import DataFetcher
from user_index.repositories.user_records import decode_field_value, user_records

from fakes import COHORT_A, COHORT_B, USER_ID, eligibility_schema, fixed_clock, make_settings


def _seed(session: Session) -> None:
    session.add_all(
        [
            UserModel(
                user_id=USER_ID,
                username="asha.k",
                first_name="Asha",
                last_name="Kumar",
                email="asha@example.org",
                dob=date(2001, 5, 4),
                district="Pune",
                status="active",
                created_at=datetime(2023, 1, 10, 9, 30),
            ),
            UserTenantMappingModel(id="map-1", user_id=USER_ID, tenant_id="tenant-7"),
            CohortModel(cohort_id=COHORT_A, name="Spring Batch", type="COHORT", status="active"),
            CohortModel(cohort_id=COHORT_B, name="Autumn Batch", type="COHORT", status="active"),
            CohortMemberModel(
                cohort_membership_id="m-1",
                cohort_id=COHORT_A,
                user_id=USER_ID,
                status="active",
                created_at=datetime(2023, 2, 1),
            ),
            CohortMemberModel(
                cohort_membership_id="m-2",
                cohort_id=COHORT_B,
                user_id=USER_ID,
                status="shortlisted",
                created_at=datetime(2023, 3, 1),
            ),
            FormModel(form_id="form-a", title="Eligibility", context_id=COHORT_A, fields=eligibility_schema("f-income")),
            FormSubmissionModel(
                submission_id="sub-a",
                form_id="form-a",
                item_id=USER_ID,
                status="active",
                created_at=datetime(2023, 2, 2),
                updated_at=datetime(2023, 2, 3, 12, 0),
            ),
            FieldModel(field_id="f-income", name="income", label="Income", type="text", context="COHORTMEMBER"),
            FieldModel(field_id="f-lang", name="languages", label="Languages", type="checkbox", context="USERS"),
            FieldValueModel(field_values_id="v-1", item_id=USER_ID, field_id="f-income", value="below 1 lakh"),
            FieldValueModel(
                field_values_id="v-2",
                item_id=USER_ID,
                field_id="f-lang",
                value=json.dumps(["Hindi", "Marathi"]),
            ),
        ]
    )
    session.commit()


@pytest.fixture
def engine(tmp_path: Path):
    engine = create_engine(f"sqlite:///{tmp_path / 'users.db'}", future=True)
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _seed(session)
    yield engine
    engine.dispose()


def test_user_row_is_a_detached_snapshot(engine) -> None:
    with Session(engine) as session:
        row = user_records.get_user(session, f"  {USER_ID} ")

    assert row is not None
    assert (row.first_name, row.last_name, row.dob) == ("Asha", "Kumar", "2001-05-04")
    assert row.created_at == datetime(2023, 1, 10, 9, 30)


def test_unknown_user_is_none(engine) -> None:
    with Session(engine) as session:
        assert user_records.get_user(session, "0e9d8c7b-6a5f-4e3d-8c2b-1a0f9e8d7c6b") is None
        with pytest.raises(ValueError):
            user_records.get_user(session, " ")


def test_memberships_submissions_and_tenant(engine) -> None:
    with Session(engine) as session:
        memberships = user_records.list_memberships(session, USER_ID)
        submissions = user_records.list_submissions(session, USER_ID)
        tenant = user_records.get_tenant_id(session, USER_ID)
        user_ids = user_records.list_user_ids(session, limit=10)

    assert [(row.cohort_id, row.cohort_name) for row in memberships] == [
        (COHORT_A, "Spring Batch"),
        (COHORT_B, "Autumn Batch"),
    ]
    assert submissions[0].form_context_id == COHORT_A
    assert submissions[0].form_schema == eligibility_schema("f-income")
    assert tenant == "tenant-7"
    assert user_ids == [USER_ID]


def test_field_values_carry_field_metadata(engine) -> None:
    with Session(engine) as session:
        values = {row.field_id: row for row in user_records.list_field_values(session, USER_ID)}

    assert values["f-lang"].value == ["Hindi", "Marathi"]
    assert values["f-lang"].context == "USERS"
    assert values["f-income"].label == "Income"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, None), ("plain", "plain"), ('["a", "b"]', ["a", "b"]), ("[not json", "[not json")],
)
def test_decode_field_value(raw, expected) -> None:
    assert decode_field_value(raw) == expected


def test_fetcher_reads_through_sessions(engine) -> None:
    fetcher = DataFetcher(
        settings=make_settings(),
        session_factory=lambda: Session(engine),
        clock=fixed_clock,
    )

    snapshot = asyncio.run(fetcher.fetch_profile(USER_ID))
    applications = asyncio.run(fetcher.fetch_applications(USER_ID))
    context = asyncio.run(fetcher.upstream_context(USER_ID))

    assert snapshot.profile.district == "Pune"
    assert snapshot.placeholders_applied == []
    languages = [field for field in snapshot.raw_custom_fields if field.field_id == "f-lang"][0]
    assert languages.value == "Hindi, Marathi"

    first, second = applications
    assert (first.cohort_id, first.submission_id, first.formstatus) == (COHORT_A, "sub-a", "active")
    assert first.submitted_at is not None
    page_fields = {field_id for page in first.progress.pages.values() for field_id in page.fields}
    assert page_fields == {"f-income"}
    # The only submission targets cohort A; cohort B falls back to it.
    assert second.submission_id == "sub-a"
    assert context.tenant_id == "tenant-7"


@pytest.fixture
def configured_database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("USER_INDEX_DATABASE_URL", f"sqlite:///{tmp_path / 'scoped.db'}")
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.create_all(engine)
    yield
    dispose_engine()
    get_settings.cache_clear()


def test_session_scope_uses_configured_engine(configured_database: None) -> None:
    with session_scope(commit=True) as session:
        _seed(session)

    with session_scope() as session:
        assert user_records.list_user_ids(session, limit=5) == [USER_ID]


def test_engine_options_per_backend() -> None:
    memory = engine_options(make_settings(USER_INDEX_DATABASE_URL="sqlite://"))
    postgres = engine_options(
        make_settings(USER_INDEX_DATABASE_URL="postgresql+psycopg://u:p@db/users", USER_INDEX_DATABASE_POOL_SIZE=4)
    )

    assert memory["poolclass"] is StaticPool
    assert "pool_size" not in memory
    assert (postgres["pool_size"], postgres["max_overflow"]) == (4, 10)


def test_missing_database_url_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        SessionProvider(make_settings(USER_INDEX_DATABASE_URL=None))
