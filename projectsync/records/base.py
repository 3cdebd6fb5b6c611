"""
ProjectSync Records — shared base model, input validation and collection registry.

Every entity module defines:
- a Record model (what a subscription publishes)
- a create schema and an update schema (what the gateway accepts)
- a CollectionSpec registered under its store collection name

Wire names are camelCase; Python attributes are snake_case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from projectsync.engine.errors import ValidationError
from projectsync.store.base import ASCENDING, DocumentSnapshot

logger = logging.getLogger("projectsync.records")

PENDING_TIMESTAMP_LABEL = "Processing..."

R = TypeVar("R", bound="Record")
S = TypeVar("S", bound="InputSchema")


class Record(BaseModel):
    """Typed view of one stored document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str

    @classmethod
    def from_snapshot(cls: Type[R], snapshot: DocumentSnapshot) -> R:
        """
        Map a store snapshot into a record.

        Optional fields may be missing; a missing server timestamp maps to None.
        Raises pydantic's ValidationError when required fields are unusable.
        """
        data = dict(snapshot.data or {})
        data["id"] = snapshot.id
        return cls.model_validate(data)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude={"id"})


class InputSchema(BaseModel):
    """Base for create/update payload schemas."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    # Fields written as explicit nulls when absent instead of being omitted
    explicit_null_fields: ClassVar[FrozenSet[str]] = frozenset()

    def to_wire(self, partial: bool = False) -> Dict[str, Any]:
        """
        Dump to store field names.

        partial=True keeps only the fields the caller supplied (update patches).
        """
        if partial:
            return self.model_dump(by_alias=True, mode="json", exclude_unset=True)
        data = self.model_dump(by_alias=True, mode="json")
        return {
            k: v for k, v in data.items()
            if v is not None or k in self.explicit_null_fields
        }


def field_errors_from(exc: PydanticValidationError) -> Dict[str, str]:
    """Flatten pydantic errors to {field: message}, first message per field wins."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = err.get("loc") or ()
        key = str(loc[0]) if loc else "__all__"
        if key in errors:
            continue
        if err.get("type") == "value_error" and "error" in (err.get("ctx") or {}):
            errors[key] = str(err["ctx"]["error"])
        else:
            errors[key] = err.get("msg", "Invalid value")
    return errors


def validate_input(
    schema: Type[S],
    payload: Dict[str, Any],
    collection: Optional[str] = None,
    operation: str = "create",
) -> S:
    """Validate a payload or raise ValidationError carrying per-field messages."""
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as e:
        field_errors = field_errors_from(e)
        raise ValidationError(
            f"Invalid {collection or schema.__name__} input: "
            + "; ".join(f"{k}: {v}" for k, v in field_errors.items()),
            collection=collection,
            operation=operation,
            field_errors=field_errors,
        ) from e


def display_timestamp(value: Optional[datetime], fmt: str = "%b %d, %Y") -> str:
    """Render a server timestamp; pending or missing values render as "Processing..."."""
    if value is None:
        return PENDING_TIMESTAMP_LABEL
    return value.strftime(fmt)


# ---------------------------------------------------------------------------
# Collection registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CollectionSpec:
    """
    Everything the subscription manager and gateway need to know about a collection.

    owner_field: field compared against the session user before delete (None = any
        authenticated user may delete) and stamped on create.
    blob_field: field holding a storage path whose blob is deleted with the record.
    """

    name: str
    record_type: Type[Record]
    create_schema: Type[InputSchema]
    update_schema: Type[InputSchema]
    timestamp_field: str
    noun: str
    plural: str
    owner_field: Optional[str] = None
    blob_field: Optional[str] = None
    scope_field: str = "projectId"
    default_order: Optional[Tuple[str, str]] = ("createdAt", ASCENDING)
    immutable_fields: FrozenSet[str] = field(default_factory=frozenset)
    delete_noun: Optional[str] = None

    @property
    def load_error_message(self) -> str:
        return f"Failed to load {self.plural}."

    @property
    def detail_error_message(self) -> str:
        return f"Failed to load {self.noun} details."

    @property
    def not_found_message(self) -> str:
        return f"{self.noun.capitalize()} not found."

    @property
    def permission_message(self) -> str:
        return f"You don't have permission to delete this {self.delete_noun or self.noun}."


_collections: Dict[str, CollectionSpec] = {}


def register_collection(spec: CollectionSpec) -> CollectionSpec:
    _collections[spec.name] = spec
    return spec


def get_collection(name: str) -> CollectionSpec:
    if name not in _collections:
        raise KeyError(f"Collection '{name}' not registered. Available: {list(_collections.keys())}")
    return _collections[name]


def registered_collections() -> Iterable[str]:
    return list(_collections.keys())
