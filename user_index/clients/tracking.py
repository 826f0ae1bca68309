"""Client for the LMS lesson-tracking service."""

from __future__ import annotations

from typing import List

from pydantic import ValidationError

from ..records import LessonTrack
from .base import UpstreamClient, UpstreamContext, extract_records


class TrackingClient(UpstreamClient):
    service = "tracking"

    async def fetch_lesson_tracks(self, user_id: str, context: UpstreamContext) -> List[LessonTrack]:
        payload = await self._get_json(f"/tracking/attempts/progress/{user_id}", context)
        if payload is None:
            return []
        tracks: List[LessonTrack] = []
        for raw in extract_records(payload):
            try:
                tracks.append(LessonTrack.model_validate(raw))
            except ValidationError as exc:
                self._logger.warning("Skipping malformed lesson track for user %s: %s", user_id, exc.errors()[:1])
        return tracks


__all__ = ["TrackingClient"]
