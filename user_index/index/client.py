"""Async wrapper around the Elasticsearch ``users`` index."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from elasticsearch import ApiError, AsyncElasticsearch, ConflictError, NotFoundError, TransportError
from elasticsearch.helpers import async_bulk

from ..config import Settings
from ..errors import (
    ConfigurationError,
    DocumentMissingError,
    IndexUnavailableError,
    VersionConflictError,
)
from .mapping import USER_INDEX_MAPPING, USER_INDEX_SETTINGS

DOCUMENT_MISSING = "document_missing_exception"


@dataclass(frozen=True)
class VersionedDocument:
    source: Dict[str, Any]
    seq_no: Optional[int] = None
    primary_term: Optional[int] = None


@dataclass
class SearchPage:
    total: int
    hits: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class BulkSummary:
    succeeded: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


def _error_type(exc: ApiError) -> Optional[str]:
    body = exc.body if isinstance(exc.body, Mapping) else {}
    error = body.get("error")
    if isinstance(error, Mapping):
        return error.get("type")
    return None


def _status(exc: ApiError) -> Optional[int]:
    meta = getattr(exc, "meta", None)
    return getattr(meta, "status", None)


def _without_none(**kwargs: Any) -> Dict[str, Any]:
    return {key: value for key, value in kwargs.items() if value is not None}


class UserIndexClient:
    """Index operations the sync engine needs, with driver errors mapped onto ours.

    ``get`` returns ``None`` for a missing document. ``update`` raises
    ``DocumentMissingError`` when the target is gone and
    ``VersionConflictError`` when ``if_seq_no`` no longer matches.
    """

    def __init__(
        self,
        client: AsyncElasticsearch,
        *,
        index: str = "users",
        refresh: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._index = index
        self._refresh = refresh
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings) -> "UserIndexClient":
        basic_auth = None
        if settings.elasticsearch_username and settings.elasticsearch_password:
            basic_auth = (settings.elasticsearch_username, settings.elasticsearch_password)
        client = AsyncElasticsearch(
            settings.elasticsearch_host,
            basic_auth=basic_auth,
            request_timeout=settings.elasticsearch_timeout_seconds,
        )
        return cls(client, index=settings.elasticsearch_index, refresh=settings.elasticsearch_refresh)

    @property
    def index_name(self) -> str:
        return self._index

    async def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        versioned = await self.get_versioned(doc_id)
        return versioned.source if versioned is not None else None

    async def get_versioned(self, doc_id: str) -> Optional[VersionedDocument]:
        try:
            response = await self._client.get(index=self._index, id=doc_id)
        except NotFoundError:
            return None
        except (ApiError, TransportError) as exc:
            raise IndexUnavailableError(f"get {doc_id} failed: {exc}") from exc
        return VersionedDocument(
            source=dict(response["_source"]),
            seq_no=response.get("_seq_no"),
            primary_term=response.get("_primary_term"),
        )

    async def index(self, doc_id: str, document: Mapping[str, Any]) -> None:
        try:
            await self._client.index(
                index=self._index,
                id=doc_id,
                document=dict(document),
                refresh=self._refresh,
            )
        except (ApiError, TransportError) as exc:
            raise IndexUnavailableError(f"index {doc_id} failed: {exc}") from exc

    async def update(
        self,
        doc_id: str,
        *,
        doc: Optional[Mapping[str, Any]] = None,
        script: Optional[Mapping[str, Any]] = None,
        upsert: Optional[Mapping[str, Any]] = None,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        retry_on_conflict: Optional[int] = None,
    ) -> None:
        """Apply a partial ``doc`` (deep-merged server side) or a ``script`` to one document."""
        if (doc is None) == (script is None):
            raise ValueError("Exactly one of doc or script must be provided.")
        if retry_on_conflict is not None and if_seq_no is not None:
            raise ValueError("retry_on_conflict cannot be combined with if_seq_no.")
        try:
            await self._client.update(
                index=self._index,
                id=doc_id,
                refresh=self._refresh,
                **_without_none(
                    doc=dict(doc) if doc is not None else None,
                    script=dict(script) if script is not None else None,
                    upsert=dict(upsert) if upsert is not None else None,
                    if_seq_no=if_seq_no,
                    if_primary_term=if_primary_term,
                    retry_on_conflict=retry_on_conflict,
                ),
            )
        except NotFoundError as exc:
            if _error_type(exc) in (DOCUMENT_MISSING, None):
                raise DocumentMissingError(f"Document {doc_id} is missing from {self._index}.", user_id=doc_id) from exc
            raise IndexUnavailableError(f"update {doc_id} failed: {exc}", status_code=404) from exc
        except ConflictError as exc:
            raise VersionConflictError(doc_id) from exc
        except (ApiError, TransportError) as exc:
            status = _status(exc) if isinstance(exc, ApiError) else None
            raise IndexUnavailableError(f"update {doc_id} failed: {exc}", status_code=status) from exc

    async def search(
        self,
        query: Mapping[str, Any],
        *,
        size: int = 10,
        from_: int = 0,
        sort: Optional[List[Dict[str, Any]]] = None,
        source: Any = None,
    ) -> SearchPage:
        try:
            response = await self._client.search(
                index=self._index,
                query=dict(query),
                size=size,
                from_=from_,
                track_total_hits=True,
                **_without_none(sort=sort, source=source),
            )
        except (ApiError, TransportError) as exc:
            raise IndexUnavailableError(f"search failed: {exc}") from exc
        hits = response["hits"]
        total = hits.get("total", 0)
        if isinstance(total, Mapping):
            total = total.get("value", 0)
        return SearchPage(total=int(total), hits=[dict(hit["_source"]) for hit in hits.get("hits", [])])

    async def delete(self, doc_id: str) -> bool:
        """Delete one document; returns False when it did not exist."""
        try:
            await self._client.delete(index=self._index, id=doc_id, refresh=self._refresh)
        except NotFoundError:
            return False
        except (ApiError, TransportError) as exc:
            raise IndexUnavailableError(f"delete {doc_id} failed: {exc}") from exc
        return True

    async def bulk(self, operations: Iterable[Mapping[str, Any]]) -> BulkSummary:
        """Run bulk actions (``{"_op_type", "_id", ...}``) against this index."""
        actions = [{"_index": self._index, **dict(operation)} for operation in operations]
        if not actions:
            return BulkSummary()
        try:
            succeeded, errors = await async_bulk(
                self._client,
                actions,
                raise_on_error=False,
                refresh=self._refresh,
            )
        except (ApiError, TransportError) as exc:
            raise IndexUnavailableError(f"bulk request failed: {exc}") from exc
        failures = list(errors) if isinstance(errors, list) else []
        if failures:
            self._logger.warning("Bulk request to %s had %d failed action(s)", self._index, len(failures))
        return BulkSummary(succeeded=int(succeeded), errors=failures)

    async def ensure_index(
        self,
        mapping: Optional[Mapping[str, Any]] = None,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Create the index when absent. Returns True when it was created."""
        try:
            if await self._client.indices.exists(index=self._index):
                return False
            await self._client.indices.create(
                index=self._index,
                mappings=dict(mapping or USER_INDEX_MAPPING),
                settings=dict(settings or USER_INDEX_SETTINGS),
            )
        except (ApiError, TransportError) as exc:
            raise ConfigurationError(f"Unable to prepare index {self._index}: {exc}") from exc
        self._logger.info("Created index %s", self._index)
        return True

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except TransportError:
            return False

    async def close(self) -> None:
        await self._client.close()


__all__ = [
    "BulkSummary",
    "DOCUMENT_MISSING",
    "SearchPage",
    "UserIndexClient",
    "VersionedDocument",
]
