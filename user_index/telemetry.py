"""Sync lifecycle events.

Every notable step of a sync (a skipped or degraded fragment, a conflict
retry, a create fallback, a finished sync) is reported through
``emit_event``. Events are written to the ``user_index.telemetry`` logger as
one sorted JSON object per line, counted per name, and handed to any
in-process listeners.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("user_index.telemetry")

Listener = Callable[["TelemetryEvent"], None]


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def user_id(self) -> Optional[str]:
        return self.payload.get("user_id")

    def as_record(self) -> Dict[str, Any]:
        return {"event": self.name, "at": self.emitted_at.isoformat(), **self.payload}


_listeners: List[Listener] = []
_counts: Counter = Counter()
_lock = RLock()


def register_listener(listener: Listener) -> Callable[[], None]:
    """Subscribe to events; the returned callable unsubscribes."""
    with _lock:
        _listeners.append(listener)

    def remove() -> None:
        with _lock:
            if listener in _listeners:
                _listeners.remove(listener)

    return remove


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


def event_counts() -> Dict[str, int]:
    with _lock:
        return dict(_counts)


def reset_counts() -> None:
    with _lock:
        _counts.clear()


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    event = TelemetryEvent(name=name, payload=_clean(fields))
    with _lock:
        _counts[name] += 1
        listeners = list(_listeners)

    logger.info("TELEMETRY %s", json.dumps(event.as_record(), default=str, sort_keys=True))
    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener %r failed on %s", listener, name)
    return event


def _clean(fields: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, BaseException):
            value = f"{type(value).__name__}: {value}"
        elif isinstance(value, (set, frozenset, tuple)):
            value = sorted(value, key=str) if isinstance(value, (set, frozenset)) else list(value)
        cleaned[key] = value
    return cleaned


__all__ = [
    "Listener",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "event_counts",
    "register_listener",
    "reset_counts",
]
