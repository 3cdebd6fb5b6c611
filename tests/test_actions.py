"""Unit tests for projectsync.sync.actions — EditingSurface error mapping."""

from unittest.mock import AsyncMock

import pytest

from projectsync.engine.errors import (
    NotFoundError,
    PermissionDeniedError,
    SessionError,
    TransportError,
    ValidationError,
)
from projectsync.sync.actions import EditingSurface


class TestEditingSurface:
    def test_defaults(self):
        surface = EditingSurface("create task")
        assert surface.is_open is False
        assert surface.failure_message == "Failed to create task. Please try again."

    @pytest.mark.asyncio
    async def test_success_closes(self):
        surface = EditingSurface("create task")
        surface.open()
        result = await surface.run(AsyncMock(return_value="T1"))
        assert result == "T1"
        assert surface.is_open is False
        assert surface.error is None
        assert surface.submitting is False

    @pytest.mark.asyncio
    async def test_validation_sets_field_errors(self):
        surface = EditingSurface("log expense")
        surface.open()
        err = ValidationError("bad", field_errors={"amount": "Amount must be positive."})
        assert await surface.run(AsyncMock(side_effect=err)) is None
        assert surface.is_open is True
        assert surface.field_errors == {"amount": "Amount must be positive."}
        assert surface.error is None
        assert surface.last_error is err

    @pytest.mark.asyncio
    async def test_validation_without_fields_sets_inline_message(self):
        surface = EditingSurface("sign up")
        surface.open()
        await surface.run(AsyncMock(side_effect=ValidationError("Passwords do not match.")))
        assert surface.error == "Passwords do not match."

    @pytest.mark.asyncio
    async def test_permission_denied_sets_alert(self):
        surface = EditingSurface("delete expense")
        surface.open()
        err = PermissionDeniedError("You don't have permission to delete this expense.")
        await surface.run(AsyncMock(side_effect=err))
        assert surface.alert == "You don't have permission to delete this expense."
        assert surface.is_open is True
        surface.dismiss_alert()
        assert surface.alert is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("err,message", [
        (SessionError("Authentication error."), "Authentication error."),
        (NotFoundError("Task not found."), "Task not found."),
    ])
    async def test_session_and_not_found_inline(self, err, message):
        surface = EditingSurface("update task")
        surface.open()
        await surface.run(AsyncMock(side_effect=err))
        assert surface.error == message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("err", [TransportError("network down"), RuntimeError("bug")])
    async def test_everything_else_is_generic(self, err):
        surface = EditingSurface("create project", failure_message="Failed to create project.")
        surface.open()
        assert await surface.run(AsyncMock(side_effect=err)) is None
        assert surface.error == "Failed to create project."
        assert surface.is_open is True

    @pytest.mark.asyncio
    async def test_retry_clears_previous_errors(self):
        surface = EditingSurface("create task")
        surface.open()
        await surface.run(AsyncMock(side_effect=TransportError("down")))
        await surface.run(AsyncMock(return_value="T1"))
        snapshot = surface.snapshot()
        assert snapshot["error"] is None
        assert snapshot["is_open"] is False
        assert snapshot["field_errors"] == {}
