"""
ProjectSync Documents — uploads and the document / receipt workflows.

Blob layout: projects/{project_id}/{general | tasks/{task_id} | receipts}/{epoch_ms}_{nonce}_{name}
"""

from projectsync.documents.service import DocumentService, OrphanReport
from projectsync.documents.uploads import (
    UploadCoordinator,
    UploadResult,
    UploadSource,
    UploadState,
    UploadTask,
    destination_path,
    safe_filename,
)

__all__ = [
    "DocumentService",
    "OrphanReport",
    "UploadCoordinator",
    "UploadResult",
    "UploadSource",
    "UploadState",
    "UploadTask",
    "destination_path",
    "safe_filename",
]
