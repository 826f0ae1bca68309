"""Read-side repositories."""

from .user_records import UserRecordsRepository, user_records

__all__ = ["UserRecordsRepository", "user_records"]
