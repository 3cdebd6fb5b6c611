"""ProjectSync Identity — auth session lifecycle and identity providers."""

from projectsync.identity.provider import (  # noqa: F401
    IdentityProvider,
    LocalIdentityProvider,
    hash_password,
    verify_password,
)
from projectsync.identity.session import AuthSession, AuthState, SessionUser  # noqa: F401

__all__ = [
    "IdentityProvider",
    "LocalIdentityProvider",
    "hash_password",
    "verify_password",
    "AuthSession",
    "AuthState",
    "SessionUser",
]
