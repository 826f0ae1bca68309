"""Client for the assessment service's attempt and answer endpoints."""

from __future__ import annotations

from typing import Any, Dict, List

from .base import UpstreamClient, UpstreamContext, extract_records

# Attempt summaries the answers endpoint may refresh alongside the answer list.
ENRICHMENT_KEYS = (
    "totalQuestions",
    "questionsAttempted",
    "score",
    "percentComplete",
    "timeSpent",
    "status",
    "updatedAt",
)


class AssessmentClient(UpstreamClient):
    service = "assessment"

    async def list_attempts(self, user_id: str, context: UpstreamContext) -> List[Dict[str, Any]]:
        payload = await self._get_json(f"/attempts/user/{user_id}", context)
        if payload is None:
            return []
        return [record for record in extract_records(payload) if isinstance(record, dict)]

    async def fetch_answers(self, attempt_id: str, context: UpstreamContext) -> Dict[str, Any]:
        """Return ``{"answers": [...]}`` plus any attempt summary fields the service sent."""
        payload = await self._get_json(f"/attempts/{attempt_id}/answers", context)
        if payload is None:
            return {"answers": []}
        enrichment: Dict[str, Any] = {}
        source = payload.get("result", payload) if isinstance(payload, dict) else payload
        if isinstance(source, dict):
            enrichment = {key: source[key] for key in ENRICHMENT_KEYS if source.get(key) is not None}
        answers = [answer for answer in extract_records(payload) if isinstance(answer, dict)]
        return {**enrichment, "answers": answers}


__all__ = ["AssessmentClient", "ENRICHMENT_KEYS"]
