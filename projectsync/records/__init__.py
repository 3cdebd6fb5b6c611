"""
ProjectSync Records — typed entities and the collection registry.

Importing this package registers every collection.
"""

from projectsync.records.base import (  # noqa: F401
    PENDING_TIMESTAMP_LABEL,
    CollectionSpec,
    InputSchema,
    Record,
    display_timestamp,
    get_collection,
    registered_collections,
    validate_input,
)
from projectsync.records.document import DOCUMENTS, Document, DocumentCreate  # noqa: F401
from projectsync.records.expense import EXPENSES, Expense, ExpenseCreate, total_amount  # noqa: F401
from projectsync.records.project import PROJECTS, Project, ProjectCreate  # noqa: F401
from projectsync.records.task import TASKS, Task, TaskCreate, TaskStatus  # noqa: F401
from projectsync.records.time_entry import (  # noqa: F401
    TIME_ENTRIES,
    TimeEntry,
    TimeEntryCreate,
    total_hours,
)

__all__ = [
    "PENDING_TIMESTAMP_LABEL",
    "CollectionSpec",
    "InputSchema",
    "Record",
    "display_timestamp",
    "get_collection",
    "registered_collections",
    "validate_input",
    "DOCUMENTS",
    "Document",
    "DocumentCreate",
    "EXPENSES",
    "Expense",
    "ExpenseCreate",
    "total_amount",
    "PROJECTS",
    "Project",
    "ProjectCreate",
    "TASKS",
    "Task",
    "TaskCreate",
    "TaskStatus",
    "TIME_ENTRIES",
    "TimeEntry",
    "TimeEntryCreate",
    "total_hours",
]
