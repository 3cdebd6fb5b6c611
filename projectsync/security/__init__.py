"""ProjectSync Security — ownership checks."""

from projectsync.security.permissions import can_delete, owner_of  # noqa: F401

__all__ = ["can_delete", "owner_of"]
