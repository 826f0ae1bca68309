"""Read queries over the user-service tables.

Rows are copied into frozen snapshots before the session closes so callers
never touch a detached ORM instance from another thread.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import (
    CohortMemberModel,
    FieldValueModel,
    FormSubmissionModel,
    UserModel,
    UserTenantMappingModel,
)


def _normalize_user_id(user_id: str) -> str:
    normalized = user_id.strip()
    if not normalized:
        raise ValueError("User id cannot be empty.")
    return normalized


@dataclass(frozen=True)
class UserRow:
    user_id: str
    username: Optional[str]
    first_name: Optional[str]
    middle_name: Optional[str]
    last_name: Optional[str]
    email: Optional[str]
    mobile: Optional[str]
    mobile_country_code: Optional[str]
    gender: Optional[str]
    dob: Optional[str]
    country: Optional[str]
    address: Optional[str]
    district: Optional[str]
    state: Optional[str]
    pincode: Optional[str]
    status: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


@dataclass(frozen=True)
class FieldValueRow:
    field_id: str
    value: Any
    name: Optional[str]
    label: Optional[str]
    type: Optional[str]
    context: Optional[str]
    context_type: Optional[str]


@dataclass(frozen=True)
class MembershipRow:
    cohort_id: str
    status: Optional[str]
    cohort_name: Optional[str]
    cohort_type: Optional[str]
    cohort_status: Optional[str]


@dataclass(frozen=True)
class SubmissionRow:
    submission_id: str
    form_id: str
    status: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    form_context_id: Optional[str]
    form_schema: Any


def _format_dob(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def decode_field_value(raw: Optional[str]) -> Any:
    """Field values are stored as text; multi-select values arrive JSON encoded."""
    if raw is None:
        return None
    stripped = raw.strip()
    if stripped.startswith("["):
        try:
            decoded = json.loads(stripped)
        except ValueError:
            return raw
        if isinstance(decoded, list):
            return decoded
    return raw


class UserRecordsRepository:
    """Read-only access to the rows a user document is assembled from."""

    def get_user(self, session: Session, user_id: str) -> UserRow | None:
        normalized = _normalize_user_id(user_id)
        model = session.execute(select(UserModel).where(UserModel.user_id == normalized)).scalar_one_or_none()
        if model is None:
            return None
        return UserRow(
            user_id=model.user_id,
            username=model.username,
            first_name=model.first_name,
            middle_name=model.middle_name,
            last_name=model.last_name,
            email=model.email,
            mobile=model.mobile,
            mobile_country_code=model.mobile_country_code,
            gender=model.gender,
            dob=_format_dob(model.dob),
            country=model.country,
            address=model.address,
            district=model.district,
            state=model.state,
            pincode=model.pincode,
            status=model.status,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def list_field_values(self, session: Session, user_id: str) -> List[FieldValueRow]:
        normalized = _normalize_user_id(user_id)
        stmt = (
            select(FieldValueModel)
            .where(FieldValueModel.item_id == normalized)
            .order_by(FieldValueModel.field_values_id)
        )
        rows: List[FieldValueRow] = []
        for model in session.execute(stmt).unique().scalars():
            field = model.field
            rows.append(
                FieldValueRow(
                    field_id=model.field_id,
                    value=decode_field_value(model.value),
                    name=field.name if field else None,
                    label=field.label if field else None,
                    type=field.type if field else None,
                    context=field.context if field else None,
                    context_type=field.context_type if field else None,
                )
            )
        return rows

    def list_memberships(self, session: Session, user_id: str) -> List[MembershipRow]:
        normalized = _normalize_user_id(user_id)
        stmt = (
            select(CohortMemberModel)
            .where(CohortMemberModel.user_id == normalized)
            .order_by(CohortMemberModel.created_at, CohortMemberModel.cohort_membership_id)
        )
        rows: List[MembershipRow] = []
        for model in session.execute(stmt).unique().scalars():
            cohort = model.cohort
            rows.append(
                MembershipRow(
                    cohort_id=model.cohort_id,
                    status=model.status,
                    cohort_name=cohort.name if cohort else None,
                    cohort_type=cohort.type if cohort else None,
                    cohort_status=cohort.status if cohort else None,
                )
            )
        return rows

    def list_submissions(self, session: Session, user_id: str) -> List[SubmissionRow]:
        """Submissions for the user, oldest first."""
        normalized = _normalize_user_id(user_id)
        stmt = (
            select(FormSubmissionModel)
            .where(FormSubmissionModel.item_id == normalized)
            .order_by(FormSubmissionModel.created_at, FormSubmissionModel.submission_id)
        )
        rows: List[SubmissionRow] = []
        for model in session.execute(stmt).unique().scalars():
            form = model.form
            rows.append(
                SubmissionRow(
                    submission_id=model.submission_id,
                    form_id=model.form_id,
                    status=model.status,
                    created_at=model.created_at,
                    updated_at=model.updated_at,
                    form_context_id=form.context_id if form else None,
                    form_schema=form.fields if form else None,
                )
            )
        return rows

    def get_tenant_id(self, session: Session, user_id: str) -> str | None:
        normalized = _normalize_user_id(user_id)
        stmt = (
            select(UserTenantMappingModel.tenant_id)
            .where(UserTenantMappingModel.user_id == normalized)
            .order_by(UserTenantMappingModel.id)
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    def list_user_ids(self, session: Session, *, limit: int, offset: int = 0) -> List[str]:
        stmt = select(UserModel.user_id).order_by(UserModel.user_id).limit(limit).offset(offset)
        return list(session.execute(stmt).scalars())


user_records = UserRecordsRepository()

__all__ = [
    "FieldValueRow",
    "MembershipRow",
    "SubmissionRow",
    "UserRecordsRepository",
    "UserRow",
    "decode_field_value",
    "user_records",
]
