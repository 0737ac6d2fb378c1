"""
SQLAlchemy engine, declarative base and request-scoped sessions.

The URL comes from settings.database_url: PostgreSQL in deployments, SQLite
for local runs and tests.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session, DeclarativeBase
from typing import Any, Dict, Generator

from fieldops.lib.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by every table in fieldops.models."""


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    create_engine keyword arguments for the given URL.

    SQLite manages its own pool, so pool sizing only applies to server databases.
    """
    options: Dict[str, Any] = {"echo": settings.debug}
    if make_url(database_url).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
    return options


engine = create_engine(settings.database_url, **engine_options(settings.database_url))

# Objects stay readable after commit; services refresh explicitly when they need fresh state
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db() -> None:
    """Create any missing tables for the registered models."""
    import fieldops.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
