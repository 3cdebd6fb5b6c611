"""
ProjectSync Database Session Management.

Single entry point for database initialisation plus a context manager for
DB access. Uses the global EngineRegistry.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from projectsync.db.base import Base, engine_registry


def init_db(
    db_url: str,
    name: str = "store",
    create_tables: bool = True,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> sessionmaker:
    """
    Register an engine under ``name`` and optionally create all tables.

    Returns a sessionmaker bound to the engine; the document store and the
    identity provider each take one.
    """
    engine = engine_registry.register(
        name, db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_tables(engine: Optional[Engine] = None, name: str = "store") -> None:
    """Create all tables on an engine (idempotent)."""
    Base.metadata.create_all(engine or engine_registry.get(name))


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            session.add(obj)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
