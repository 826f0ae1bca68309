"""Keeps the per-user search documents in the ``users`` index in sync with their sources."""
