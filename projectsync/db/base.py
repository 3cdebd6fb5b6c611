"""
ProjectSync Database Base — declarative base and named engines.

Provides:
- Base: declarative base for every ProjectSync table
- EngineRegistry: engines by name, so the document store and the identity
  provider can live in different databases
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def engine_options(
    url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> Dict[str, Any]:
    """create_engine() keyword arguments for ``url``."""
    if not url.startswith("sqlite"):
        return {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_recycle": pool_recycle,
            "pool_pre_ping": pool_pre_ping,
        }
    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    # An in-memory database exists only on its one connection
    if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
        options["poolclass"] = StaticPool
    return options


class EngineRegistry:
    """
    Usage:
        engine = engine_registry.register("store", "postgresql://...")
        with engine_registry.session("store") as session:
            ...
    """

    def __init__(self):
        self._engines: Dict[str, Engine] = {}
        self._factories: Dict[str, sessionmaker] = {}

    def register(self, name: str, url: str, **options: Any) -> Engine:
        """Create an engine for ``url`` under ``name``, replacing any earlier one."""
        pool_keys = ("pool_size", "max_overflow", "pool_recycle", "pool_pre_ping")
        pool = {k: options.pop(k) for k in pool_keys if k in options}
        engine = create_engine(url, **{**engine_options(url, **pool), **options})
        self._engines[name] = engine
        self._factories[name] = sessionmaker(bind=engine, expire_on_commit=False)
        return engine

    def get(self, name: str) -> Engine:
        try:
            return self._engines[name]
        except KeyError:
            raise KeyError(f"Engine '{name}' not registered. Available: {self.names}") from None

    def session(self, name: str = "store") -> Session:
        self.get(name)
        return self._factories[name]()

    def dispose(self, name: Optional[str] = None) -> None:
        """Close the connection pool of one engine, or of all of them."""
        for key in ([name] if name else list(self._engines)):
            engine = self._engines.get(key)
            if engine is not None:
                engine.dispose()

    @property
    def names(self) -> List[str]:
        return list(self._engines)


engine_registry = EngineRegistry()
