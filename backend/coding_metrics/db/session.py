"""Engine and session helpers for the metrics store.

The engine is built lazily from :func:`~coding_metrics.config.get_settings` so
tests can point ``CODEMETRICS_DATABASE_URL`` at a throwaway SQLite file and
call :func:`dispose_engine` to start over.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import Settings, get_settings
from .base import Base

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def engine_options(settings: Settings) -> Dict[str, Any]:
    if not settings.database_url:
        raise RuntimeError("CODEMETRICS_DATABASE_URL must be configured before using the database.")

    url = make_url(settings.database_url)
    options: Dict[str, Any] = {"echo": settings.database_echo, "pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty database.
            options["poolclass"] = StaticPool
    else:
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


def get_engine() -> Engine:
    global _engine, _session_factory
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(settings.database_url, **engine_options(settings))
        _session_factory = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        logger.info("Metrics database engine created (%s)", _engine.url.get_backend_name())
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    return _session_factory


def create_schema() -> None:
    """Create missing tables; existing tables are left untouched."""
    from . import models  # noqa: F401

    Base.metadata.create_all(get_engine())


@contextmanager
def session_scope(*, commit: bool = True) -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "create_schema",
    "dispose_engine",
    "engine_options",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
