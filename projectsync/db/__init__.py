"""ProjectSync DB — tables, engine registry and session helpers."""

from projectsync.db.base import Base, EngineRegistry, engine_registry  # noqa: F401
from projectsync.db.models import StoredDocument, UserAccount  # noqa: F401
from projectsync.db.session import create_tables, init_db, session_scope  # noqa: F401

__all__ = [
    "Base",
    "EngineRegistry",
    "engine_registry",
    "StoredDocument",
    "UserAccount",
    "create_tables",
    "init_db",
    "session_scope",
]
