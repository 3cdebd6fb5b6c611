"""TimeEntry — hours logged against a project, optionally against a task."""

from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, Optional

from pydantic import Field, field_validator

from projectsync.records.base import CollectionSpec, InputSchema, Record, register_collection
from projectsync.store.base import DESCENDING

COLLECTION = "timeEntries"

MIN_HOURS = 0.1
MAX_HOURS = 24.0


class TimeEntry(Record):
    project_id: str
    task_id: Optional[str] = None
    user_id: Optional[str] = None
    date: Optional[dt.date] = None
    hours: float = 0.0
    notes: Optional[str] = None
    created_at: Optional[dt.datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        if isinstance(v, str) and "T" in v:
            return dt.datetime.fromisoformat(v).date()
        return v


def _check_hours(v: Any) -> Any:
    try:
        hours = float(v)
    except (TypeError, ValueError):
        raise ValueError("Hours must be positive.")
    if hours != hours or hours < MIN_HOURS:
        raise ValueError("Hours must be positive.")
    if hours > MAX_HOURS:
        raise ValueError("Cannot log more than 24 hours at once.")
    return hours


class TimeEntryCreate(InputSchema):
    project_id: str = Field(min_length=1)
    task_id: Optional[str] = None
    date: dt.date
    hours: float
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Any:
        if v is None or v == "":
            raise ValueError("Date is required.")
        return v

    @field_validator("hours", mode="before")
    @classmethod
    def validate_hours(cls, v: Any) -> Any:
        return _check_hours(v)


class TimeEntryUpdate(InputSchema):
    task_id: Optional[str] = None
    date: Optional[dt.date] = None
    hours: Optional[float] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("hours", mode="before")
    @classmethod
    def validate_hours(cls, v: Any) -> Any:
        return _check_hours(v)


def total_hours(entries: Iterable[TimeEntry]) -> float:
    """Sum of hours logged."""
    return sum((e.hours or 0.0) for e in entries)


TIME_ENTRIES = register_collection(CollectionSpec(
    name=COLLECTION,
    record_type=TimeEntry,
    create_schema=TimeEntryCreate,
    update_schema=TimeEntryUpdate,
    timestamp_field="createdAt",
    noun="time entry",
    plural="time entries",
    delete_noun="entry",
    owner_field="userId",
    default_order=("date", DESCENDING),
    immutable_fields=frozenset({"projectId", "userId", "createdAt"}),
))
