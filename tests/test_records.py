"""Unit tests for projectsync.records — entity models, input schemas, registry."""

import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from projectsync.engine.errors import ValidationError
from projectsync.records import (
    DOCUMENTS,
    EXPENSES,
    PENDING_TIMESTAMP_LABEL,
    PROJECTS,
    TASKS,
    TIME_ENTRIES,
    Document,
    Expense,
    ExpenseCreate,
    Project,
    Task,
    TaskCreate,
    TaskStatus,
    TimeEntry,
    TimeEntryCreate,
    display_timestamp,
    get_collection,
    registered_collections,
    total_amount,
    total_hours,
    validate_input,
)
from projectsync.records.project import ProjectCreate, ProjectUpdate
from projectsync.records.task import TaskUpdate
from projectsync.store.base import DESCENDING, DocumentSnapshot


class TestRegistry:
    def test_all_collections_registered(self):
        assert set(registered_collections()) >= {
            "projects", "tasks", "documents", "expenses", "timeEntries",
        }

    def test_get_collection(self):
        assert get_collection("tasks") is TASKS

    def test_unknown_collection(self):
        with pytest.raises(KeyError):
            get_collection("invoices")

    def test_owner_fields(self):
        assert PROJECTS.owner_field == "ownerId"
        assert TASKS.owner_field is None
        assert DOCUMENTS.owner_field == "uploaderId"
        assert EXPENSES.owner_field == "userId"
        assert TIME_ENTRIES.owner_field == "userId"

    def test_blob_fields(self):
        assert DOCUMENTS.blob_field == "storagePath"
        assert EXPENSES.blob_field == "receiptPath"
        assert TASKS.blob_field is None

    def test_messages(self):
        assert TASKS.load_error_message == "Failed to load tasks."
        assert PROJECTS.not_found_message == "Project not found."
        assert PROJECTS.detail_error_message == "Failed to load project details."
        assert EXPENSES.permission_message == "You don't have permission to delete this expense."
        assert DOCUMENTS.permission_message == "You don't have permission to delete this file."
        assert TIME_ENTRIES.load_error_message == "Failed to load time entries."

    def test_default_orders(self):
        assert PROJECTS.default_order is None
        assert DOCUMENTS.default_order == ("uploadedAt", DESCENDING)
        assert EXPENSES.default_order == ("date", DESCENDING)


class TestProject:
    def test_from_snapshot(self):
        project = Project.from_snapshot(DocumentSnapshot("P1", {
            "name": "Website Redesign",
            "ownerId": "U1",
            "createdAt": "2024-03-01T10:00:00+00:00",
        }))
        assert project.id == "P1"
        assert project.owner_id == "U1"
        assert project.created_at.year == 2024
        assert project.has_folder is False
        assert project.folder_name == "Website Redesign [P1]"

    def test_legacy_folder_field(self):
        project = Project.from_snapshot(DocumentSnapshot("P1", {"name": "X1", "driveFolderId": "F9"}))
        assert project.external_folder_id == "F9"
        assert project.to_wire()["externalFolderId"] == "F9"

    def test_missing_name_is_unmappable(self):
        with pytest.raises(PydanticValidationError):
            Project.from_snapshot(DocumentSnapshot("P1", {"ownerId": "U1"}))

    def test_name_bounds(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(ProjectCreate, {"name": "A"}, "projects")
        assert exc_info.value.field_errors["name"] == "Project name must be at least 2 characters."

        with pytest.raises(ValidationError):
            validate_input(ProjectCreate, {"name": "x" * 51}, "projects")

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(ProjectCreate, {"name": "Website", "budget": 10}, "projects")
        assert "budget" in exc_info.value.field_errors

    def test_update_partial(self):
        model = validate_input(ProjectUpdate, {"description": "New"}, "projects", "update")
        assert model.to_wire(partial=True) == {"description": "New"}


class TestTask:
    def test_status_defaults_to_todo(self):
        model = validate_input(TaskCreate, {"projectId": "P1", "title": "Draft wireframes"})
        assert model.status is TaskStatus.TODO
        assert model.to_wire()["status"] == "TODO"

    def test_record_status_default(self):
        task = Task.from_snapshot(DocumentSnapshot("T1", {"projectId": "P1", "title": "Draft"}))
        assert task.status is TaskStatus.TODO
        assert task.status_label == "To Do"
        assert task.created_at is None

    def test_status_labels(self):
        assert TaskStatus.IN_PROGRESS.label == "In Progress"
        assert TaskStatus.DONE.label == "Done"

    def test_invalid_status(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(TaskCreate, {"projectId": "P1", "title": "Draft", "status": "BLOCKED"})
        assert "status" in exc_info.value.field_errors

    def test_title_message(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(TaskCreate, {"projectId": "P1", "title": " x "})
        assert exc_info.value.field_errors["title"] == "Task title must be at least 2 characters."

    def test_update_rejects_null_status(self):
        with pytest.raises(ValidationError):
            validate_input(TaskUpdate, {"status": None}, "tasks", "update")

    def test_due_date_from_timestamp(self):
        task = Task.from_snapshot(DocumentSnapshot("T1", {
            "projectId": "P1", "title": "Draft", "dueDate": "2024-05-01T00:00:00",
        }))
        assert task.due_date == dt.date(2024, 5, 1)


class TestExpense:
    def _values(self, **overrides):
        values = {"projectId": "P1", "date": "2024-03-02", "amount": "12.50", "description": "Taxi"}
        values.update(overrides)
        return values

    @pytest.mark.parametrize("amount", [0, "-5", "0.001", "abc", None, "NaN"])
    def test_amount_must_be_positive(self, amount):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(ExpenseCreate, self._values(amount=amount), "expenses")
        assert exc_info.value.field_errors["amount"] == "Amount must be positive."

    def test_valid_amount(self):
        model = validate_input(ExpenseCreate, self._values(amount="0.01"), "expenses")
        assert model.amount == Decimal("0.01")

    def test_explicit_null_receipt(self):
        wire = validate_input(ExpenseCreate, self._values(), "expenses").to_wire()
        assert wire["receiptName"] is None
        assert wire["receiptPath"] is None
        assert wire["receiptURL"] is None
        assert wire["amount"] == "12.50"
        assert wire["date"] == "2024-03-02"

    def test_receipt_all_or_nothing(self):
        with pytest.raises(ValidationError):
            validate_input(ExpenseCreate, self._values(receiptName="r.pdf"), "expenses")

        model = validate_input(ExpenseCreate, self._values(
            receiptName="r.pdf", receiptPath="projects/P1/receipts/1_r.pdf",
            receiptURL="https://files.example.com/projects/P1/receipts/1_r.pdf",
        ), "expenses")
        assert model.to_wire()["receiptURL"].startswith("https://")

    def test_date_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(ExpenseCreate, self._values(date=None), "expenses")
        assert exc_info.value.field_errors["date"] == "Date is required."

    def test_description_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(ExpenseCreate, self._values(description=""), "expenses")
        assert exc_info.value.field_errors["description"] == "Description is required."

    def test_total_amount(self):
        expenses = [
            Expense(id="E1", project_id="P1", amount=Decimal("10.10")),
            Expense(id="E2", project_id="P1", amount=Decimal("2.40")),
        ]
        assert total_amount(expenses) == Decimal("12.50")
        assert total_amount([]) == Decimal("0")

    def test_receipt_url_alias(self):
        expense = Expense.from_snapshot(DocumentSnapshot("E1", {
            "projectId": "P1", "amount": "3", "receiptURL": "https://x", "receiptPath": "p",
        }))
        assert expense.receipt_url == "https://x"
        assert expense.has_receipt is True


class TestTimeEntry:
    def _values(self, **overrides):
        values = {"projectId": "P1", "date": "2024-03-02", "hours": 2}
        values.update(overrides)
        return values

    @pytest.mark.parametrize("hours", [0, -1, 0.05, "abc"])
    def test_hours_must_be_positive(self, hours):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(TimeEntryCreate, self._values(hours=hours), "timeEntries")
        assert exc_info.value.field_errors["hours"] == "Hours must be positive."

    def test_hours_upper_bound(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(TimeEntryCreate, self._values(hours=24.5), "timeEntries")
        assert exc_info.value.field_errors["hours"] == "Cannot log more than 24 hours at once."

    @pytest.mark.parametrize("hours", [0.1, 8, 24])
    def test_hours_in_range(self, hours):
        assert validate_input(TimeEntryCreate, self._values(hours=hours)).hours == float(hours)

    def test_total_hours(self):
        entries = [
            TimeEntry(id="1", project_id="P1", hours=1.5),
            TimeEntry(id="2", project_id="P1", hours=2.0),
        ]
        assert total_hours(entries) == 3.5


class TestDocumentAndTimestamps:
    def test_document_mapping(self):
        doc = Document.from_snapshot(DocumentSnapshot("D1", {
            "projectId": "P1", "name": "plan.pdf",
            "storagePath": "projects/P1/general/1_plan.pdf",
            "downloadURL": "https://files.example.com/projects/P1/general/1_plan.pdf",
            "uploaderId": "U1",
        }))
        assert doc.download_url.endswith("1_plan.pdf")
        assert doc.uploaded_label == PENDING_TIMESTAMP_LABEL
        assert doc.to_wire()["downloadURL"] == doc.download_url

    def test_display_timestamp(self):
        assert display_timestamp(None) == "Processing..."
        assert display_timestamp(dt.datetime(2024, 3, 1, 9, 30)) == "Mar 01, 2024"
