"""Elasticsearch index access for user documents."""

from .client import BulkSummary, SearchPage, UserIndexClient, VersionedDocument
from .mapping import USER_INDEX_MAPPING, USER_INDEX_SETTINGS
from .query import UserSearchRequest, build_search_query

__all__ = [
    "BulkSummary",
    "SearchPage",
    "USER_INDEX_MAPPING",
    "USER_INDEX_SETTINGS",
    "UserIndexClient",
    "UserSearchRequest",
    "VersionedDocument",
    "build_search_query",
]
