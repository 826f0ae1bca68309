"""Shared HTTP plumbing for the LMS and assessment collaborators."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..errors import UpstreamUnavailableError

NO_DATA_STATUSES = frozenset({401, 404})


@dataclass(frozen=True)
class UpstreamContext:
    """Tenant scope and credentials sent with every collaborator call."""

    tenant_id: str
    organisation_id: str
    token: Optional[str] = None

    @property
    def has_token(self) -> bool:
        return bool(self.token and self.token.strip())

    def headers(self) -> Dict[str, str]:
        headers = {
            "tenantid": self.tenant_id,
            "organisationid": self.organisation_id,
            "Accept": "application/json",
        }
        if self.has_token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


def extract_records(payload: Any) -> List[Any]:
    """Pull the record list out of the envelopes the collaborators use."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for key in ("result", "data", "items", "attempts", "answers"):
        value = payload.get(key)
        if isinstance(value, list):
            return value
        if isinstance(value, dict):
            nested = extract_records(value)
            if nested:
                return nested
    return []


class UpstreamClient:
    """GET-only JSON client with a bounded timeout.

    401 and 404 mean "nothing to report" and yield ``None``; every other
    failure is raised as ``UpstreamUnavailableError``.
    """

    service = "upstream"

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._client = client
        self._logger = logger or logging.getLogger(__name__)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_json(self, path: str, context: UpstreamContext) -> Any | None:
        url = f"{self._base_url}{path}"
        local_client = self._client or httpx.AsyncClient(timeout=self._timeout_seconds)
        try:
            response = await local_client.get(url, headers=context.headers(), timeout=self._timeout_seconds)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailableError(self.service, f"GET {path} timed out after {self._timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(self.service, f"GET {path} failed: {exc}") from exc
        finally:
            if self._client is None:
                await local_client.aclose()

        if response.status_code in NO_DATA_STATUSES:
            self._logger.info("%s returned %s for %s; treating as no data", self.service, response.status_code, path)
            return None
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailableError(
                self.service,
                f"GET {path} returned {response.status_code}",
                status_code=response.status_code,
            ) from exc
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailableError(self.service, f"GET {path} returned invalid JSON") from exc


__all__ = ["NO_DATA_STATUSES", "UpstreamClient", "UpstreamContext", "extract_records"]
