"""
Document — metadata for a file uploaded to a project (optionally to a task).

storagePath and downloadURL are a unit: the record is only written once the
blob is stored and its download reference is known, and deleting the record
deletes the blob.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from projectsync.records.base import (
    CollectionSpec,
    InputSchema,
    Record,
    display_timestamp,
    register_collection,
)
from projectsync.store.base import DESCENDING

COLLECTION = "documents"


class Document(Record):
    project_id: str
    task_id: Optional[str] = None
    name: str
    storage_path: str
    download_url: str = Field(alias="downloadURL")
    uploaded_at: Optional[datetime] = None
    uploader_id: Optional[str] = None

    @property
    def uploaded_label(self) -> str:
        return display_timestamp(self.uploaded_at, "%b %d, %Y %H:%M")


class DocumentCreate(InputSchema):
    project_id: str = Field(min_length=1)
    task_id: Optional[str] = None
    name: str = Field(min_length=1, max_length=255)
    storage_path: str = Field(min_length=1)
    download_url: str = Field(min_length=1, alias="downloadURL")


class DocumentUpdate(InputSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


DOCUMENTS = register_collection(CollectionSpec(
    name=COLLECTION,
    record_type=Document,
    create_schema=DocumentCreate,
    update_schema=DocumentUpdate,
    timestamp_field="uploadedAt",
    noun="document",
    plural="documents",
    delete_noun="file",
    owner_field="uploaderId",
    blob_field="storagePath",
    default_order=("uploadedAt", DESCENDING),
    immutable_fields=frozenset({
        "projectId", "taskId", "uploaderId", "uploadedAt", "storagePath", "downloadURL",
    }),
))
