"""Project — the tenant root. Owns tasks, documents, expenses and time entries."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, Field, field_validator

from projectsync.records.base import CollectionSpec, InputSchema, Record, register_collection

COLLECTION = "projects"


class Project(Record):
    name: str
    description: Optional[str] = None
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None
    # Older documents carry the folder reference as driveFolderId
    external_folder_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("externalFolderId", "driveFolderId", "external_folder_id"),
        serialization_alias="externalFolderId",
    )

    @property
    def has_folder(self) -> bool:
        return bool(self.external_folder_id)

    @property
    def folder_name(self) -> str:
        """Name of the external folder provisioned for this project."""
        return f"{self.name} [{self.id}]"


class ProjectCreate(InputSchema):
    name: str = Field(max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if len(v.strip()) < 2:
            raise ValueError("Project name must be at least 2 characters.")
        return v


class ProjectUpdate(InputSchema):
    name: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> Any:
        if v is None or len(str(v).strip()) < 2:
            raise ValueError("Project name must be at least 2 characters.")
        return v


PROJECTS = register_collection(CollectionSpec(
    name=COLLECTION,
    record_type=Project,
    create_schema=ProjectCreate,
    update_schema=ProjectUpdate,
    timestamp_field="createdAt",
    noun="project",
    plural="projects",
    owner_field="ownerId",
    scope_field="ownerId",
    default_order=None,
    immutable_fields=frozenset({"ownerId", "externalFolderId", "createdAt"}),
))
