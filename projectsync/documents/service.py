"""
ProjectSync Document Service — document uploads, expense receipts, orphan reports.

Handles:
- Document upload: blob transfer, then exactly one ``documents`` metadata create
- Expense logging: validate first, upload the optional receipt into the
  project's receipts namespace, then create the expense with the receipt
  triple (or explicit nulls)
- Orphan report: blobs with no metadata record and records whose blob is gone.
  Read-only; nothing is ever deleted here.

Physical layout is owned by the blob store; paths come from destination_path().
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from projectsync.engine.errors import SessionError
from projectsync.engine.logging import log, log_orphan_resource
from projectsync.identity.session import AuthSession, SessionUser
from projectsync.mutations.gateway import MutationGateway
from projectsync.records import DOCUMENTS, EXPENSES, ExpenseCreate, validate_input
from projectsync.store.base import Query
from projectsync.documents.uploads import (
    UploadCoordinator,
    UploadResult,
    UploadSource,
    UploadTask,
    destination_path,
)

logger = logging.getLogger("projectsync.documents.service")

DEFAULT_RECEIPT_TYPES = ("image/*", "application/pdf")


@dataclass
class OrphanReport:
    project_id: str
    orphan_blobs: List[str] = field(default_factory=list)
    missing_blobs: List[Dict[str, str]] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.orphan_blobs and not self.missing_blobs

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DocumentService:
    """
    Usage:
        service = DocumentService(gateway, UploadCoordinator(blobs))
        task = service.upload_document(session, "P1", UploadSource.from_path("plan.pdf"))
        result = await task.result()   # result.record_id is the document id
    """

    def __init__(
        self,
        gateway: MutationGateway,
        uploads: UploadCoordinator,
        receipt_mime_types: Sequence[str] = DEFAULT_RECEIPT_TYPES,
    ):
        self._gateway = gateway
        self._uploads = uploads
        self._receipt_types = tuple(receipt_mime_types)

    @staticmethod
    def _require_user(session: Optional[AuthSession], message: str) -> SessionUser:
        if session is None or not session.is_authenticated:
            raise SessionError(message)
        return session.user

    @staticmethod
    def _as_source(source: Union[UploadSource, bytes], file_name: Optional[str]) -> UploadSource:
        if isinstance(source, UploadSource):
            return source if file_name is None else UploadSource(
                name=file_name, data=source.data, size=source.size, content_type=source.content_type,
            )
        if not file_name:
            raise ValueError("file_name is required when uploading raw bytes")
        return UploadSource.from_bytes(file_name, source)

    # -------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------

    def upload_document(
        self,
        session: Optional[AuthSession],
        project_id: str,
        source: Union[UploadSource, bytes],
        file_name: Optional[str] = None,
        task_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> UploadTask:
        """
        Start a document upload. The metadata record is written once the blob
        and its download URL exist; a failed or cancelled upload writes nothing.
        """
        user = self._require_user(session, "Please select a file and ensure you are logged in.")
        upload = self._as_source(source, file_name)
        path = destination_path(project_id, upload.name, task_id=task_id, now=now)

        async def write_metadata(result: UploadResult) -> str:
            payload: Dict[str, Any] = {
                "projectId": project_id,
                "name": upload.name,
                "storagePath": result.path,
                "downloadURL": result.url,
            }
            if task_id:
                payload["taskId"] = task_id
            return await self._gateway.create(DOCUMENTS.name, payload, session)

        return self._uploads.upload(upload, path, on_completed=write_metadata, user_id=user.uid)

    # -------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------

    async def create_expense(
        self,
        session: Optional[AuthSession],
        project_id: str,
        values: Mapping[str, Any],
        receipt: Optional[UploadSource] = None,
        on_upload: Optional[Callable[[UploadTask], None]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """
        Log an expense, with an optional receipt.

        Values are validated before the receipt is uploaded, so an invalid
        amount never produces a blob. Returns the expense id, or None when
        the receipt upload was cancelled.
        """
        self._require_user(session, "Authentication error.")
        payload = {k: v for k, v in values.items() if k not in ("receipt", "projectId", "project_id")}
        payload["projectId"] = project_id
        validate_input(ExpenseCreate, payload, EXPENSES.name, "create")

        receipt_fields: Dict[str, Optional[str]] = {
            "receiptName": None,
            "receiptPath": None,
            "receiptURL": None,
        }
        if receipt is not None:
            path = destination_path(project_id, receipt.name, kind="receipts", now=now)
            task = self._uploads.upload(
                receipt, path, accept=self._receipt_types, user_id=session.uid,
            )
            if on_upload is not None:
                on_upload(task)
            result = await task.result()
            if result is None:
                logger.info(f"Receipt upload cancelled; expense for {project_id} not created")
                return None
            receipt_fields = {
                "receiptName": receipt.name,
                "receiptPath": result.path,
                "receiptURL": result.url,
            }

        payload.update(receipt_fields)
        try:
            return await self._gateway.create(EXPENSES.name, payload, session)
        except Exception:
            if receipt_fields["receiptPath"]:
                log(log_orphan_resource(
                    "blob", receipt_fields["receiptPath"], collection=EXPENSES.name,
                    reason="expense create failed after receipt upload",
                ))
            raise

    # -------------------------------------------------------------------
    # Orphans
    # -------------------------------------------------------------------

    async def find_orphans(self, project_id: str) -> OrphanReport:
        """List blobs without records and records without blobs for one project."""
        store = self._gateway.store
        blobs = set(await self._uploads.blobs.list(f"projects/{project_id}"))

        referenced: Dict[str, Dict[str, str]] = {}
        for spec in (DOCUMENTS, EXPENSES):
            for snapshot in await store.fetch(Query(spec.name, where=("projectId", project_id))):
                path = (snapshot.data or {}).get(spec.blob_field)
                if path:
                    referenced[path] = {"collection": spec.name, "record_id": snapshot.id, "path": path}

        report = OrphanReport(project_id=project_id)
        report.orphan_blobs = sorted(blobs - set(referenced))
        report.missing_blobs = [referenced[p] for p in sorted(set(referenced) - blobs)]

        for path in report.orphan_blobs:
            log(log_orphan_resource("blob", path, reason="no metadata record"))
        for item in report.missing_blobs:
            log(log_orphan_resource(
                "record", item["path"], collection=item["collection"],
                record_id=item["record_id"], reason="blob missing",
            ))
        logger.info(
            f"Orphan report for {project_id}: {len(report.orphan_blobs)} blob(s), "
            f"{len(report.missing_blobs)} record(s)"
        )
        return report
