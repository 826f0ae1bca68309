"""REST endpoints for syncing, reading and searching user documents."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from .errors import (
    ConfigurationError,
    DocumentNotFoundError,
    IndexUnavailableError,
    InvalidSyncRequestError,
    SyncError,
    UpstreamUnavailableError,
    VersionConflictError,
)
from .events import parse_event
from .index.query import UserSearchRequest
from .sync import SyncOrchestrator, SyncResult

router = APIRouter(prefix="/api", tags=["users"])
logger = logging.getLogger(__name__)

_orchestrator: Optional[SyncOrchestrator] = None


def get_orchestrator() -> SyncOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SyncOrchestrator.from_settings()
    return _orchestrator


def reset_orchestrator() -> Optional[SyncOrchestrator]:
    """Forget the cached orchestrator and return it so the caller can close its clients."""
    global _orchestrator
    previous, _orchestrator = _orchestrator, None
    return previous


def _http_error(exc: SyncError) -> HTTPException:
    if isinstance(exc, InvalidSyncRequestError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, DocumentNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, VersionConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (IndexUnavailableError, UpstreamUnavailableError, ConfigurationError)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _sync_payload(result: SyncResult) -> Dict[str, Any]:
    return {**result.summary(), "document": result.document.to_payload()}


@router.post("/users/{user_id}/sync")
async def sync_user(
    user_id: str,
    section: str = Query("all"),
    tenant_id: Optional[str] = Header(default=None, alias="tenantid"),
    organisation_id: Optional[str] = Header(default=None, alias="organisationid"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        result = await orchestrator.sync_user(
            user_id, section, tenant_id=tenant_id, organisation_id=organisation_id
        )
    except SyncError as exc:
        logger.warning("Sync of user %s (%s) failed: %s", user_id, section, exc)
        raise _http_error(exc) from exc
    return _sync_payload(result)


@router.get("/users/{user_id}")
async def get_user_document(
    user_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        document = await orchestrator.get_document(user_id)
    except SyncError as exc:
        raise _http_error(exc) from exc
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No document for user {user_id}.")
    return document.to_payload()


@router.delete("/users/{user_id}")
async def delete_user_document(
    user_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        deleted = await orchestrator.delete_user(user_id)
    except SyncError as exc:
        raise _http_error(exc) from exc
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No document for user {user_id}.")
    return {"userId": user_id, "deleted": True}


@router.post("/users/search")
async def search_users(
    request: UserSearchRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        page = await orchestrator.search(request)
    except SyncError as exc:
        raise _http_error(exc) from exc
    return {"total": page.total, "size": request.size, "from": request.from_, "users": page.hits}


@router.post("/webhooks/events", status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(
    payload: Dict[str, Any] = Body(...),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        event = parse_event(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=jsonable_encoder(exc.errors())
        ) from exc
    try:
        result = await orchestrator.apply_event(event)
    except SyncError as exc:
        logger.warning("Event %s for user %s failed: %s", event.kind, event.user_id, exc)
        raise _http_error(exc) from exc
    return {**result.summary(), "kind": event.kind}


__all__ = ["get_orchestrator", "reset_orchestrator", "router"]
