"""
Expense — money spent on a project, with an optional receipt blob.

The receipt is a (name, path, url) triple: all three are set or all three
are null. Absent receipts are written as explicit nulls so existing readers
that check for null keep working.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, ClassVar, FrozenSet, Iterable, Optional

from pydantic import Field, field_validator, model_validator

from projectsync.records.base import CollectionSpec, InputSchema, Record, register_collection
from projectsync.store.base import DESCENDING

COLLECTION = "expenses"

MIN_AMOUNT = Decimal("0.01")
RECEIPT_FIELDS = ("receipt_name", "receipt_path", "receipt_url")


class Expense(Record):
    project_id: str
    user_id: Optional[str] = None
    date: Optional[dt.date] = None
    amount: Decimal = Decimal("0")
    description: str = ""
    receipt_name: Optional[str] = None
    receipt_path: Optional[str] = None
    receipt_url: Optional[str] = Field(default=None, alias="receiptURL")
    created_at: Optional[dt.datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        if isinstance(v, str) and "T" in v:
            return dt.datetime.fromisoformat(v).date()
        return v

    @property
    def has_receipt(self) -> bool:
        return bool(self.receipt_path)


def _check_amount(v: Any) -> Any:
    if v is None:
        raise ValueError("Amount must be positive.")
    try:
        amount = Decimal(str(v))
    except ArithmeticError:
        raise ValueError("Amount must be positive.")
    if not amount.is_finite() or amount < MIN_AMOUNT:
        raise ValueError("Amount must be positive.")
    return amount


def _check_description(v: Any) -> Any:
    if v is None or len(str(v).strip()) < 2:
        raise ValueError("Description is required.")
    return v


class ExpenseCreate(InputSchema):
    explicit_null_fields: ClassVar[FrozenSet[str]] = frozenset(
        {"receiptName", "receiptPath", "receiptURL"}
    )

    project_id: str = Field(min_length=1)
    date: dt.date
    amount: Decimal
    description: str = Field(max_length=200)
    receipt_name: Optional[str] = None
    receipt_path: Optional[str] = None
    receipt_url: Optional[str] = Field(default=None, alias="receiptURL")

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Any:
        if v is None or v == "":
            raise ValueError("Date is required.")
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Any:
        return _check_amount(v)

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> Any:
        return _check_description(v)

    @model_validator(mode="after")
    def validate_receipt(self) -> "ExpenseCreate":
        present = [getattr(self, name) is not None for name in RECEIPT_FIELDS]
        if any(present) and not all(present):
            raise ValueError("Receipt name, path and URL must be provided together.")
        return self


class ExpenseUpdate(InputSchema):
    date: Optional[dt.date] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = Field(default=None, max_length=200)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Any:
        return _check_amount(v)

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> Any:
        return _check_description(v)


def total_amount(expenses: Iterable[Expense]) -> Decimal:
    """Sum of expense amounts."""
    return sum((e.amount or Decimal("0") for e in expenses), Decimal("0"))


EXPENSES = register_collection(CollectionSpec(
    name=COLLECTION,
    record_type=Expense,
    create_schema=ExpenseCreate,
    update_schema=ExpenseUpdate,
    timestamp_field="createdAt",
    noun="expense",
    plural="expenses",
    owner_field="userId",
    blob_field="receiptPath",
    default_order=("date", DESCENDING),
    immutable_fields=frozenset({
        "projectId", "userId", "createdAt", "receiptName", "receiptPath", "receiptURL",
    }),
))
