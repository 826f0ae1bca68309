"""Sessions for reading the user-service database.

The sync engine never writes these tables. A ``session_scope`` session is
rolled back on exit unless ``commit=True`` is passed, which only fixtures and
seeding scripts do. Sessions are opened from worker threads, so the provider
is created once under a lock.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Dict, Iterator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import Settings, get_settings
from ..errors import ConfigurationError

SessionScope = Callable[[], ContextManager[Session]]

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def engine_options(settings: Settings) -> Dict[str, Any]:
    url = settings.database_url or ""
    options: Dict[str, Any] = {"echo": settings.database_echo, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if url in _MEMORY_URLS:
            # One shared connection, otherwise each thread sees an empty database.
            options["poolclass"] = StaticPool
        return options
    options["pool_size"] = settings.database_pool_size
    options["max_overflow"] = settings.database_max_overflow
    return options


class SessionProvider:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, settings: Settings) -> None:
        if not settings.database_url:
            raise ConfigurationError("USER_INDEX_DATABASE_URL must be configured before reading user records.")
        self.engine: Engine = create_engine(settings.database_url, **engine_options(settings))
        self.factory: sessionmaker[Session] = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @contextmanager
    def scope(self, *, commit: bool = False) -> Iterator[Session]:
        session = self.factory()
        try:
            yield session
            if commit:
                session.commit()
            else:
                session.rollback()
        except Exception:  # noqa: BLE001
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


_provider: Optional[SessionProvider] = None
_provider_lock = threading.Lock()


def get_provider() -> SessionProvider:
    global _provider
    with _provider_lock:
        if _provider is None:
            _provider = SessionProvider(get_settings())
        return _provider


def get_engine() -> Engine:
    return get_provider().engine


def get_session_factory() -> sessionmaker[Session]:
    return get_provider().factory


def session_scope(*, commit: bool = False) -> ContextManager[Session]:
    return get_provider().scope(commit=commit)


def dispose_engine() -> None:
    global _provider
    with _provider_lock:
        provider, _provider = _provider, None
    if provider is not None:
        provider.dispose()


__all__ = [
    "SessionProvider",
    "SessionScope",
    "dispose_engine",
    "engine_options",
    "get_engine",
    "get_provider",
    "get_session_factory",
    "session_scope",
]
