"""HTTP clients for the lesson-tracking and assessment collaborators."""

from .assessment import AssessmentClient
from .base import UpstreamClient, UpstreamContext, extract_records
from .tracking import TrackingClient

__all__ = [
    "AssessmentClient",
    "TrackingClient",
    "UpstreamClient",
    "UpstreamContext",
    "extract_records",
]
