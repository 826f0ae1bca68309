"""Read-only ORM mappings of the user-service tables consumed by the sync engine.

The schema is owned and migrated by the user service; only the columns the
search document needs are mapped here.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class UserModel(TimestampMixin, Base):
    __tablename__ = "Users"

    user_id: Mapped[str] = mapped_column("userId", String(36), primary_key=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[Optional[str]] = mapped_column("firstName", String(50), nullable=True)
    middle_name: Mapped[Optional[str]] = mapped_column("middleName", String(50), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column("lastName", String(50), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(400), nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mobile: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    mobile_country_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    dob: Mapped[Optional[Any]] = mapped_column(Date, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pincode: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)


class UserTenantMappingModel(Base):
    __tablename__ = "UserTenantMapping"

    id: Mapped[str] = mapped_column("Id", String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column("userId", String(36), ForeignKey("Users.userId"), index=True)
    tenant_id: Mapped[str] = mapped_column("tenantId", String(36), nullable=False)


class CohortModel(Base):
    __tablename__ = "Cohort"

    cohort_id: Mapped[str] = mapped_column("cohortId", String(36), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    tenant_id: Mapped[Optional[str]] = mapped_column("tenantId", String(36), nullable=True)
    params: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)


class CohortMemberModel(TimestampMixin, Base):
    __tablename__ = "CohortMembers"
    __table_args__ = (Index("ix_cohort_members_user", "userId"),)

    cohort_membership_id: Mapped[str] = mapped_column("cohortMembershipId", String(36), primary_key=True)
    cohort_id: Mapped[str] = mapped_column("cohortId", String(36), ForeignKey("Cohort.cohortId"), nullable=False)
    cohort_academic_year_id: Mapped[Optional[str]] = mapped_column("cohortAcademicYearId", String(36), nullable=True)
    user_id: Mapped[str] = mapped_column("userId", String(36), nullable=False)
    status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    status_reason: Mapped[Optional[str]] = mapped_column("statusReason", String(255), nullable=True)

    cohort: Mapped[Optional[CohortModel]] = relationship(lazy="joined")


class FormModel(Base):
    __tablename__ = "forms"

    form_id: Mapped[str] = mapped_column("formid", String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    context: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    context_type: Mapped[Optional[str]] = mapped_column("contextType", String(50), nullable=True)
    context_id: Mapped[Optional[str]] = mapped_column("contextId", String(36), nullable=True, index=True)
    fields: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    tenant_id: Mapped[Optional[str]] = mapped_column("tenantId", String(36), nullable=True)


class FormSubmissionModel(TimestampMixin, Base):
    __tablename__ = "formSubmissions"
    __table_args__ = (Index("ix_form_submissions_item", "itemId"),)

    submission_id: Mapped[str] = mapped_column("submissionId", String(36), primary_key=True)
    form_id: Mapped[str] = mapped_column("formId", String(36), ForeignKey("forms.formid"), nullable=False)
    item_id: Mapped[str] = mapped_column("itemId", String(36), nullable=False)
    status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    form: Mapped[Optional[FormModel]] = relationship(lazy="joined")


class FieldModel(Base):
    __tablename__ = "Fields"

    field_id: Mapped[str] = mapped_column("fieldId", String(36), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    context: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    context_type: Mapped[Optional[str]] = mapped_column("contextType", String(50), nullable=True)
    field_params: Mapped[Optional[dict]] = mapped_column("fieldParams", JSONType, nullable=True)


class FieldValueModel(Base):
    __tablename__ = "FieldValues"
    __table_args__ = (Index("ix_field_values_item", "itemId"),)

    field_values_id: Mapped[str] = mapped_column("fieldValuesId", String(36), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_id: Mapped[str] = mapped_column("itemId", String(36), nullable=False)
    field_id: Mapped[str] = mapped_column("fieldId", String(36), ForeignKey("Fields.fieldId"), nullable=False)

    field: Mapped[Optional[FieldModel]] = relationship(lazy="joined")


__all__ = [
    "CohortMemberModel",
    "CohortModel",
    "FieldModel",
    "FieldValueModel",
    "FormModel",
    "FormSubmissionModel",
    "UserModel",
    "UserTenantMappingModel",
]
