"""Translate caller search requests into Elasticsearch queries."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidSyncRequestError
from .mapping import NESTED_PATHS

FULL_TEXT_FIELDS = ["profile.firstName^2", "profile.lastName^2", "profile.email", "profile.username"]
TOP_LEVEL_FIELDS = frozenset({"userId", "createdAt", "updatedAt"})
UUID_FIELDS = frozenset(
    {
        "userId",
        "cohortId",
        "profile.userId",
        "applications.cohortId",
        "applications.formId",
        "applications.submissionId",
    }
)
DEFAULT_SORT: List[Dict[str, Any]] = [{"updatedAt": {"order": "desc"}}]


def validate_uuid(value: Any, field: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError) as exc:
        raise InvalidSyncRequestError(f"{field} must be a valid UUID, got {value!r}.", field=field) from exc


class UserSearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    q: Optional[str] = Field(default=None, max_length=256)
    filters: Dict[str, Any] = Field(default_factory=dict)
    cohort_id: Optional[str] = Field(default=None, alias="cohortId")
    size: int = Field(default=10, ge=1, le=100)
    from_: int = Field(default=0, ge=0, alias="from")
    sort: List[Dict[str, Any]] = Field(default_factory=lambda: [dict(item) for item in DEFAULT_SORT])


def _resolve_field(field: str) -> str:
    if field in TOP_LEVEL_FIELDS or "." in field:
        return field
    if field == "cohortId":
        return "applications.cohortId"
    return f"profile.{field}"


def _nested_chain(field: str) -> List[str]:
    return [path for path in NESTED_PATHS if field.startswith(f"{path}.")]


def _leaf_query(field: str, value: Any) -> Dict[str, Any]:
    if isinstance(value, (list, tuple, set)):
        return {"terms": {field: list(value)}}
    return {"term": {field: value}}


def filter_clause(field: str, value: Any) -> Dict[str, Any]:
    """Build a term clause, wrapped in one nested query per enclosing nested path."""
    resolved = _resolve_field(field)
    if field in UUID_FIELDS or resolved in UUID_FIELDS:
        values = value if isinstance(value, (list, tuple, set)) else [value]
        checked = [validate_uuid(item, field) for item in values]
        value = checked if isinstance(value, (list, tuple, set)) else checked[0]
    clause = _leaf_query(resolved, value)
    for path in reversed(_nested_chain(resolved)):
        clause = {"nested": {"path": path, "query": clause}}
    return clause


def build_search_query(request: UserSearchRequest) -> Dict[str, Any]:
    """Return the ``query`` body for a search; raises InvalidSyncRequestError on bad filters."""
    must: List[Dict[str, Any]] = []
    filters: List[Dict[str, Any]] = []

    if request.q and request.q.strip():
        must.append(
            {
                "multi_match": {
                    "query": request.q.strip(),
                    "fields": FULL_TEXT_FIELDS,
                    "fuzziness": "AUTO",
                }
            }
        )
    if request.cohort_id:
        filters.append(filter_clause("applications.cohortId", request.cohort_id))
    for field, value in request.filters.items():
        if value is None or value == "":
            continue
        filters.append(filter_clause(field, value))

    if not must and not filters:
        return {"match_all": {}}
    return {"bool": {"must": must or [{"match_all": {}}], "filter": filters}}


__all__ = [
    "DEFAULT_SORT",
    "UserSearchRequest",
    "build_search_query",
    "filter_clause",
    "validate_uuid",
]
