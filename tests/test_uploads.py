"""Unit tests for projectsync.documents.uploads — paths, validation, upload state machine."""

import re
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from projectsync.documents.service import DocumentService
from projectsync.documents.uploads import (
    UploadCoordinator,
    UploadSource,
    UploadState,
    destination_path,
    mime_accepted,
    safe_filename,
)
from projectsync.engine.errors import TransportError, ValidationError
from projectsync.store.base import Query

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


class TestPaths:
    def test_safe_filename(self):
        assert safe_filename("../../etc/passwd") == "passwd"
        assert safe_filename("C:\\Users\\ann\\plan.pdf") == "plan.pdf"
        assert safe_filename('my:file?.pdf') == "myfile.pdf"
        assert safe_filename(".hidden") == "hidden"
        assert safe_filename("") == "unnamed_file"
        assert len(safe_filename("a" * 300 + ".pdf")) == 200

    def test_general(self):
        path = destination_path("P1", "plan.pdf", now=NOW, nonce="a1b2c3d4")
        assert path == "projects/P1/general/1709251200000_a1b2c3d4_plan.pdf"

    def test_same_name_same_instant_differs(self):
        first = destination_path("P1", "notes.txt", now=NOW)
        second = destination_path("P1", "notes.txt", now=NOW)
        assert first != second
        assert re.fullmatch(r"projects/P1/general/1709251200000_[0-9a-f]{8}_notes\.txt", first)

    def test_names_that_sanitise_alike_differ(self):
        assert destination_path("P1", "a?.pdf", now=NOW) != destination_path("P1", "a.pdf", now=NOW)

    def test_task(self):
        path = destination_path("P1", "plan.pdf", task_id="T1", now=NOW, nonce="a1b2c3d4")
        assert path == "projects/P1/tasks/T1/1709251200000_a1b2c3d4_plan.pdf"

    def test_receipts(self):
        path = destination_path("P1", "taxi.jpg", kind="receipts", now=NOW, nonce="a1b2c3d4")
        assert path == "projects/P1/receipts/1709251200000_a1b2c3d4_taxi.jpg"

    def test_requires_project(self):
        with pytest.raises(ValidationError):
            destination_path("", "plan.pdf")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            destination_path("P1", "plan.pdf", kind="avatars")


class TestValidation:
    def test_mime_accepted(self):
        assert mime_accepted("image/png", ["image/*", "application/pdf"])
        assert mime_accepted("application/pdf", ["image/*", "application/pdf"])
        assert not mime_accepted("text/plain", ["image/*", "application/pdf"])

    def test_source_mime_type(self):
        assert UploadSource.from_bytes("scan.pdf", b"x").mime_type == "application/pdf"
        assert UploadSource.from_bytes("blob", b"x").mime_type == "application/octet-stream"
        assert UploadSource.from_bytes("blob", b"x", "image/png").mime_type == "image/png"

    def test_from_path(self, tmp_path):
        path = tmp_path / "plan.txt"
        path.write_bytes(b"hello")
        source = UploadSource.from_path(path)
        assert (source.name, source.size) == ("plan.txt", 5)

    def test_size_limit(self, blobs):
        coordinator = UploadCoordinator(blobs, max_upload_size_mb=1)
        with pytest.raises(ValidationError) as exc_info:
            coordinator.validate(UploadSource.from_bytes("big.bin", b"x" * (2 * 1024 * 1024)))
        assert "file" in exc_info.value.field_errors

    def test_refused_type(self, blobs):
        coordinator = UploadCoordinator(blobs)
        with pytest.raises(ValidationError):
            coordinator.validate(UploadSource.from_bytes("notes.txt", b"x"), accept=["image/*"])


class TestUploadTask:
    @pytest.mark.asyncio
    async def test_ten_megabyte_document(self, gateway, blobs, store, u1):
        service = DocumentService(gateway, UploadCoordinator(blobs))
        source = UploadSource.from_bytes("site-assets.zip", b"\x00" * (10 * 1024 * 1024))

        task = service.upload_document(u1, "P1", source)
        fractions = [f async for f in task.progress()]
        result = await task.result()

        assert fractions[0] == 0.0
        assert fractions[-1] == 1.0
        assert all(a <= b for a, b in zip(fractions, fractions[1:]))
        assert len(fractions) > 3
        assert task.state is UploadState.COMPLETED

        documents = await store.fetch(Query("documents", where=("projectId", "P1")))
        assert len(documents) == 1
        data = documents[0].data
        assert documents[0].id == result.record_id
        assert data["storagePath"].startswith("projects/P1/general/")
        assert data["storagePath"].endswith("_site-assets.zip")
        assert data["downloadURL"] == f"https://files.example.com/{data['storagePath']}"
        assert data["uploaderId"] == "U1"
        assert data["uploadedAt"]

    @pytest.mark.asyncio
    async def test_empty_file(self, blobs):
        completed = MagicMock(return_value="D1")
        task = UploadCoordinator(blobs).upload(
            UploadSource.from_bytes("empty.txt", b""), "projects/P1/general/1_empty.txt", completed,
        )
        result = await task.result()
        assert task.fraction == 1.0
        assert result.record_id == "D1"
        assert result.size == 0
        completed.assert_called_once()

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, blobs):
        completed = MagicMock()
        task = UploadCoordinator(blobs).upload(
            UploadSource.from_bytes("a.bin", b"x" * 1024), "projects/P1/general/1_a.bin", completed,
        )
        assert task.cancel() is True
        assert await task.result() is None
        assert task.state is UploadState.CANCELLED
        assert task.done
        completed.assert_not_called()
        assert await blobs.list("projects/P1") == []

    @pytest.mark.asyncio
    async def test_cancel_mid_transfer_leaves_orphan(self, blobs, settle):
        completed = MagicMock()
        coordinator = UploadCoordinator(blobs)
        task = coordinator.upload(
            UploadSource.from_bytes("a.bin", b"x" * (1024 * 1024)), "projects/P1/general/1_a.bin", completed,
        )
        await settle(4)
        assert task.state is UploadState.UPLOADING
        assert coordinator.in_flight == [task]

        with patch("projectsync.documents.uploads.log") as mock_log:
            assert task.cancel() is True
            assert await task.result() is None

        assert task.state is UploadState.CANCELLED
        completed.assert_not_called()
        assert await blobs.list("projects/P1") == ["projects/P1/general/1_a.bin"]
        events = [c.args[0].data["event"] for c in mock_log.call_args_list]
        assert events == ["orphan_blob", "upload_cancelled"]
        assert task.cancel() is False

    @pytest.mark.asyncio
    async def test_transfer_failure(self):
        blobs = MagicMock()
        blobs.upload = AsyncMock(side_effect=OSError("disk full"))
        completed = MagicMock()
        task = UploadCoordinator(blobs).upload(
            UploadSource.from_bytes("a.bin", b"x"), "projects/P1/general/1_a.bin", completed,
        )
        with pytest.raises(TransportError):
            await task.result()
        assert task.state is UploadState.FAILED
        completed.assert_not_called()

    @pytest.mark.asyncio
    async def test_url_failure_writes_no_metadata(self, blobs):
        blobs.download_url = AsyncMock(side_effect=TransportError("no url", backend="blob"))
        completed = MagicMock()
        task = UploadCoordinator(blobs).upload(
            UploadSource.from_bytes("a.bin", b"x"), "projects/P1/general/1_a.bin", completed,
        )
        with pytest.raises(TransportError):
            await task.result()
        assert task.state is UploadState.FAILED
        completed.assert_not_called()

    @pytest.mark.asyncio
    async def test_metadata_failure_logs_orphan(self, blobs):
        completed = AsyncMock(side_effect=TransportError("store down"))
        with patch("projectsync.documents.uploads.log") as mock_log:
            task = UploadCoordinator(blobs).upload(
                UploadSource.from_bytes("a.bin", b"x"), "projects/P1/general/1_a.bin", completed,
            )
            with pytest.raises(TransportError):
                await task.result()

        assert task.state is UploadState.COMPLETED
        completed.assert_awaited_once()
        events = [c.args[0].data["event"] for c in mock_log.call_args_list]
        assert events == ["upload_completed", "orphan_blob"]

    @pytest.mark.asyncio
    async def test_cancel_all(self, blobs, settle):
        coordinator = UploadCoordinator(blobs)
        for i in range(2):
            coordinator.upload(
                UploadSource.from_bytes("a.bin", b"x" * (1024 * 1024)), f"projects/P1/general/{i}_a.bin",
            )
        await settle(2)
        assert coordinator.cancel_all() == 2
        await settle(5)
        assert coordinator.in_flight == []
