"""
ProjectSync Error Hierarchy — Structured exceptions for every failure surface.

Every error carries enough context (collection, record id, user id) to be
written to the structured event log and to be converted into editing-surface
state by the action boundary (projectsync.sync.actions).

Hierarchy:
    ProjectSyncError
    ├── NotFoundError          — Referenced entity missing
    ├── PermissionDeniedError  — Ownership check failed before a mutation
    ├── ValidationError        — Input failed schema validation
    ├── TransportError         — Store / blob store / HTTP operation failed
    ├── OrphanResourceError    — Blob or record left without its counterpart
    ├── SessionError           — No authenticated session / bad credentials
    └── ConfigError            — Invalid projectsync.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ProjectSyncError(Exception):
    """
    Base error for all ProjectSync failures.
    All context is serializable to JSON.
    """

    # Message shown to the user when the error reaches an editing surface
    user_message: str = "Something went wrong. Please try again."

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.collection: Optional[str] = context.get("collection")
        self.record_id: Optional[str] = context.get("record_id")
        self.operation: Optional[str] = context.get("operation")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "collection": self.collection,
            "record_id": self.record_id,
            "operation": self.operation,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("collection", "record_id", "operation")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.collection:
            parts.append(f"collection={self.collection}")
        if self.record_id:
            parts.append(f"record_id={self.record_id}")
        return " | ".join(parts)


class NotFoundError(ProjectSyncError):
    """Referenced entity is missing. Surfaced inline, never retried."""

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return self.message or "Not found."


class PermissionDeniedError(ProjectSyncError):
    """
    Ownership check failed. The mutation was never attempted.
    Includes the acting user and the owner recorded on the entity.
    """

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[str] = context.get("user_id")
        self.owner_id: Optional[str] = context.get("owner_id")
        super().__init__(message, **context)

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["user_id"] = self.user_id
        d["owner_id"] = self.owner_id
        return d


class ValidationError(ProjectSyncError):
    """
    Input validation failed. Blocks submission client-side.
    field_errors maps field name -> message.
    """

    def __init__(self, message: str, **context: Any):
        self.field_errors: Dict[str, str] = dict(context.get("field_errors") or {})
        super().__init__(message, **context)

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field_errors"] = self.field_errors
        return d


class TransportError(ProjectSyncError):
    """Remote store, blob store or HTTP call failed (network, quota, backend)."""

    user_message = "The operation failed. Please try again."

    def __init__(self, message: str, **context: Any):
        self.backend: Optional[str] = context.get("backend")
        self.status_code: Optional[int] = context.get("status_code")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["backend"] = self.backend
        d["status_code"] = self.status_code
        return d


class OrphanResourceError(ProjectSyncError):
    """
    A blob exists without a metadata record, or a record references a missing
    blob. Logged for later inspection; never surfaced to the user.
    """

    def __init__(self, message: str, **context: Any):
        self.storage_path: Optional[str] = context.get("storage_path")
        super().__init__(message, **context)


class SessionError(ProjectSyncError):
    """No authenticated session, or the identity provider rejected credentials."""

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return self.message or "You must be logged in."


class ConfigError(ProjectSyncError):
    """Configuration error — invalid projectsync.yaml."""
    pass
