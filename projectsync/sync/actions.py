"""
ProjectSync Action Boundary — turns async failures into editing-surface state.

An EditingSurface models a form or dialog that triggers one gateway action:

    success                 → surface closes, errors cleared
    ValidationError         → per-field errors, surface stays open
    PermissionDeniedError   → blocking alert, surface stays open
    SessionError/NotFound   → their message inline
    anything else           → generic inline message

Nothing raised by the action escapes run(); subscriptions are never touched.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from projectsync.engine.errors import (
    NotFoundError,
    PermissionDeniedError,
    ProjectSyncError,
    SessionError,
    ValidationError,
)

logger = logging.getLogger("projectsync.sync.actions")

T = TypeVar("T")


class EditingSurface:
    """Open/closed flag plus the inline error, field errors and alert of one form."""

    def __init__(self, name: str, failure_message: Optional[str] = None):
        self.name = name
        self.failure_message = failure_message or f"Failed to {name}. Please try again."
        self.is_open = False
        self.submitting = False
        self.error: Optional[str] = None
        self.field_errors: Dict[str, str] = {}
        self.alert: Optional[str] = None
        self.last_error: Optional[BaseException] = None

    def open(self) -> None:
        self.is_open = True
        self._clear()

    def close(self) -> None:
        self.is_open = False
        self.submitting = False

    def dismiss_alert(self) -> None:
        self.alert = None

    def _clear(self) -> None:
        self.error = None
        self.field_errors = {}
        self.alert = None
        self.last_error = None

    async def run(self, action: Callable[[], Awaitable[T]]) -> Optional[T]:
        """
        Run ``action`` and map its outcome onto this surface.

        Returns the action's result on success, None on failure.
        """
        self._clear()
        self.submitting = True
        try:
            result = await action()
        except ValidationError as e:
            self.field_errors = dict(e.field_errors)
            if not self.field_errors:
                self.error = e.user_message
            self._failed(e)
            return None
        except PermissionDeniedError as e:
            self.alert = e.user_message
            self._failed(e)
            return None
        except (SessionError, NotFoundError) as e:
            self.error = e.user_message
            self._failed(e)
            return None
        except ProjectSyncError as e:
            self.error = self.failure_message
            self._failed(e)
            return None
        except Exception as e:
            logger.exception(f"Unexpected failure in '{self.name}'")
            self.error = self.failure_message
            self._failed(e)
            return None

        self.submitting = False
        self.close()
        return result

    def _failed(self, error: BaseException) -> None:
        self.submitting = False
        self.last_error = error
        logger.info(f"Action '{self.name}' failed: {error!r}")

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "is_open": self.is_open,
            "submitting": self.submitting,
            "error": self.error,
            "field_errors": dict(self.field_errors),
            "alert": self.alert,
        }
