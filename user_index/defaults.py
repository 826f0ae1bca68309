"""Fallback values consulted whenever a source omits data.

Every placeholder the sync engine may write lives here so the fallback
behaviour can be audited and tested in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet


@dataclass(frozen=True)
class Defaults:
    first_name: str = "User"
    last_name: str = "Name"
    email_template: str = "user-{user_id}@example.com"
    profile_status: str = "active"

    tenant_id: str = "default-tenant"
    organisation_id: str = "default-organisation"

    # Form pages keyed "default" in a schema are stored under this name.
    page_aliases: Dict[str, str] = field(default_factory=lambda: {"default": "eligibilityCheck"})
    profile_contexts: FrozenSet[str] = frozenset({"USER", "USERS"})
    multi_value_separator: str = ", "

    cohort_name: str = "Unknown Cohort"
    cohort_status: str = "active"
    cohort_type: str = "COHORT"
    assessment_cohort_type: str = "ASSESSMENT"
    cohort_member_status: str = "active"
    enrolled_member_status: str = "enrolled"
    form_status: str = "active"
    submitted_form_status: str = "active"

    unit_id: str = "default-unit"
    unit_title: str = "Default Unit"
    content_type: str = "video"
    assessment_content_type: str = "test"
    course_title_template: str = "Course {course_id}"
    unit_title_template: str = "Unit {unit_id}"
    content_title_template: str = "Lesson {content_id}"
    assessment_title_template: str = "Assessment {test_id}"
    assessment_unit_title_template: str = "Assessment Unit {test_id}"
    assessment_cohort_name_template: str = "Assessment {test_id}"
    answer_type: str = "unknown"

    def placeholder_email(self, user_id: str) -> str:
        return self.email_template.format(user_id=user_id)

    def page_name(self, page_key: str) -> str:
        return self.page_aliases.get(page_key, page_key)

    def is_profile_context(self, context: str | None) -> bool:
        return (context or "").strip().upper() in self.profile_contexts


DEFAULTS = Defaults()

__all__ = ["DEFAULTS", "Defaults"]
