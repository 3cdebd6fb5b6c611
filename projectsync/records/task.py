"""Task — unit of work inside a project. Tasks carry no owner field."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_validator

from projectsync.records.base import CollectionSpec, InputSchema, Record, register_collection

COLLECTION = "tasks"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"

    @property
    def label(self) -> str:
        return TASK_STATUS_LABELS[self]


TASK_STATUS_LABELS = {
    TaskStatus.TODO: "To Do",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.DONE: "Done",
}


class Task(Record):
    project_id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[dt.date] = None
    created_at: Optional[dt.datetime] = None

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Any) -> Any:
        # Stored as a full ISO timestamp by some writers
        if isinstance(v, str) and "T" in v:
            return dt.datetime.fromisoformat(v).date()
        return v

    @property
    def status_label(self) -> str:
        return self.status.label


def _check_title(v: Any) -> Any:
    if v is None or len(str(v).strip()) < 2:
        raise ValueError("Task title must be at least 2 characters.")
    return v


class TaskCreate(InputSchema):
    project_id: str = Field(min_length=1)
    title: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[dt.date] = None

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v: Any) -> Any:
        return _check_title(v)


class TaskUpdate(InputSchema):
    """Editable task fields. createdAt and projectId are never patched."""

    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[TaskStatus] = None
    due_date: Optional[dt.date] = None

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v: Any) -> Any:
        return _check_title(v)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("Status is required.")
        return v


TASKS = register_collection(CollectionSpec(
    name=COLLECTION,
    record_type=Task,
    create_schema=TaskCreate,
    update_schema=TaskUpdate,
    timestamp_field="createdAt",
    noun="task",
    plural="tasks",
    immutable_fields=frozenset({"projectId", "createdAt"}),
))
