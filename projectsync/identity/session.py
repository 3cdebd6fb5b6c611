"""
ProjectSync Auth Session — explicit, injectable authentication state.

Lifecycle:
    INITIALIZING ──set_user()──▶ READY(user)
                 ──set_user(None)──▶ READY(None)

Components that need identity (gateway, list bindings, document service)
receive an AuthSession; there is no module-level current user. Listeners are
notified on every transition, including READY(user) -> READY(None) on sign-out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger("projectsync.identity.session")


@dataclass(frozen=True)
class SessionUser:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None


class AuthState(str, Enum):
    INITIALIZING = "initializing"
    READY = "ready"


SessionListener = Callable[["AuthSession"], None]


class AuthSession:
    """Observable holder of the current user."""

    def __init__(self, user: Optional[SessionUser] = None, ready: bool = False):
        self._user = user
        self._state = AuthState.READY if (ready or user is not None) else AuthState.INITIALIZING
        self._listeners: List[SessionListener] = []
        self.token: Optional[str] = None

    @classmethod
    def for_user(cls, uid: str, email: Optional[str] = None) -> "AuthSession":
        """A READY session for ``uid`` (scripts, workers, tests)."""
        return cls(SessionUser(uid=uid, email=email), ready=True)

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state is AuthState.INITIALIZING

    @property
    def user(self) -> Optional[SessionUser]:
        return self._user

    @property
    def uid(self) -> Optional[str]:
        return self._user.uid if self._user else None

    @property
    def is_authenticated(self) -> bool:
        return self._state is AuthState.READY and self._user is not None

    def set_user(self, user: Optional[SessionUser], token: Optional[str] = None) -> None:
        """Transition to READY with ``user`` (None = signed out) and notify listeners."""
        self._user = user
        self.token = token if user is not None else None
        self._state = AuthState.READY
        logger.debug(f"Session ready: {user.uid if user else 'anonymous'}")
        for listener in list(self._listeners):
            listener(self)

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def __repr__(self) -> str:
        return f"<AuthSession(state={self._state.value}, uid={self.uid!r})>"
