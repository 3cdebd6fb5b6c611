"""Unit tests for projectsync.engine.logging — FileLogger, AsyncLogQueue, entry builders."""

import json
from datetime import date, timedelta

from projectsync.engine import logging as log_mod
from projectsync.engine.logging import (
    LOG_STREAMS,
    AsyncLogQueue,
    FileLogger,
    LogEntry,
    init_logging,
    log,
    log_orphan_resource,
    log_provisioning_event,
    log_record_operation,
    log_security_event,
    log_session_event,
    log_subscription_event,
    log_system_event,
    log_upload_event,
    shutdown_logging,
)


class TestLogStreams:
    def test_expected_streams(self):
        assert set(LOG_STREAMS) == {
            "records", "subscriptions", "uploads", "orphans",
            "provisioning", "sessions", "system",
        }
        assert LOG_STREAMS["records"] == ("execution", "security")


class TestLogEntry:
    def test_to_json(self):
        entry = LogEntry("records", "execution", {"event": "record_create", "collection": "tasks"})
        assert json.loads(entry.to_json()) == {"event": "record_create", "collection": "tasks"}
        assert entry.event == "record_create"


class TestFileLogger:
    def test_creates_directories(self, tmp_path):
        FileLogger(log_dir=str(tmp_path))
        assert (tmp_path / "records" / "security").is_dir()
        assert (tmp_path / "orphans" / "execution").is_dir()

    def test_write_and_query(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        fl.write(
            log_record_operation("create", "tasks", "U1", "T1"),
            log_security_event("permission_denied", "expenses", "E1", "U1", owner_id="U2"),
            log_record_operation("create", "projects", "U1", "P1"),
        )

        entries = fl.query("records", "execution")
        assert [e["record_id"] for e in entries] == ["T1", "P1"]
        assert fl.query("records", "security")[0]["owner_id"] == "U2"

        filtered = fl.query("records", "execution", filters={"collection": "projects"})
        assert len(filtered) == 1
        assert len(fl.query("records", "execution", limit=1)) == 1

    def test_query_spans_days(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        yesterday = date.today() - timedelta(days=1)
        fl.file_for("system", "execution", yesterday).write_text('{"event":"old"}\nnot json\n')
        fl.write(log_system_event("new"))

        assert [e["event"] for e in fl.query("system", "execution")] == ["old", "new"]
        assert [e["event"] for e in fl.query("system", "execution", since=date.today())] == ["new"]

    def test_query_missing_stream(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        assert fl.query("nothing", "execution") == []


class TestAsyncLogQueue:
    def test_push_and_drain_on_stop(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        queue = AsyncLogQueue(fl, flush_interval_ms=10)
        queue.start()
        assert queue.push(log_system_event("startup"))
        queue.stop()
        assert fl.query("system", "execution")[0]["event"] == "startup"
        assert queue.pending_count == 0

    def test_drops_when_full(self, tmp_path):
        queue = AsyncLogQueue(FileLogger(log_dir=str(tmp_path)), max_queue_size=1)
        assert queue.push(log_system_event("a")) is True
        assert queue.push(log_system_event("b")) is False
        assert queue.dropped_count == 1


class TestGlobalQueue:
    def test_log_without_queue_drops(self):
        assert log(log_system_event("startup")) is False

    def test_init_log_shutdown(self, tmp_path):
        init_logging(log_dir=str(tmp_path), flush_interval_ms=10)
        assert log(log_orphan_resource("blob", "projects/P1/general/1_a.pdf")) is True
        shutdown_logging()
        assert log_mod.get_log_queue() is None
        entries = FileLogger(log_dir=str(tmp_path)).query("orphans", "execution")
        assert entries[0]["event"] == "orphan_blob"

    def test_reinit_flushes_previous_queue(self, tmp_path):
        init_logging(log_dir=str(tmp_path / "a"), flush_interval_ms=10)
        log(log_system_event("first"))
        init_logging(log_dir=str(tmp_path / "b"), flush_interval_ms=10)
        assert FileLogger(log_dir=str(tmp_path / "a")).query("system", "execution")[0]["event"] == "first"


class TestEntryBuilders:
    def test_record_operation(self):
        entry = log_record_operation("update", "tasks", "U1", "T1", fields_changed=["title", "status"])
        assert entry.stream == "records"
        assert entry.data["event"] == "record_update"
        assert entry.data["fields_changed"] == ["status", "title"]
        assert entry.data["level"] == "INFO"
        assert "error" not in entry.data

    def test_record_operation_failure(self):
        entry = log_record_operation("create", "tasks", "U1", success=False, error="boom")
        assert entry.data["level"] == "ERROR"
        assert entry.data["error"] == "boom"
        assert entry.data["success"] is False

    def test_security_event(self):
        entry = log_security_event("permission_denied", "expenses", "E1", "U1", owner_id="U2")
        assert (entry.stream, entry.category) == ("records", "security")
        assert entry.data["owner_id"] == "U2"

    def test_subscription_event(self):
        entry = log_subscription_event("records_skipped", "tasks", record_count=2, skipped=1)
        assert entry.stream == "subscriptions"
        assert entry.data["skipped"] == 1
        assert "skipped" not in log_subscription_event("opened", "tasks", skipped=0).data

    def test_upload_event_levels(self):
        assert log_upload_event("upload_failed", "p").data["level"] == "ERROR"
        assert log_upload_event("upload_completed", "p", duration_ms=1.2345).data["duration_ms"] == 1.23

    def test_orphan_resource(self):
        entry = log_orphan_resource("record", "p", collection="documents", record_id="D1", reason="blob missing")
        assert entry.data["event"] == "orphan_record"
        assert entry.data["record_id"] == "D1"

    def test_provisioning_event(self):
        entry = log_provisioning_event("provisioning_failed", "P1", error="drive down")
        assert entry.data["level"] == "ERROR"
        assert entry.data["project_id"] == "P1"
        assert "folder_id" not in entry.data

    def test_session_event_category(self):
        assert log_session_event("sign_in", user_id="U1").category == "execution"
        assert log_session_event("sign_in", success=False, reason="x").category == "security"

    def test_system_event(self):
        assert "details" not in log_system_event("runtime_stopped").data
        assert log_system_event("runtime_started", details={"a": 1}).data["details"] == {"a": 1}
