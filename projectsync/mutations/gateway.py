"""
ProjectSync Mutation Gateway — the only write path into the document store.

Every mutation:
1. Requires an authenticated AuthSession (SessionError otherwise)
2. Validates its payload against the collection's input schema before any write
3. Logs the outcome to the records audit trail

create() stamps the server timestamp and the session user into the
collection's timestamp/owner fields, overriding anything the caller sent.

delete() checks ownership with can_delete() first; a mismatch raises
PermissionDeniedError and the store is never called. Blob-bearing records are
deleted in two independent steps, metadata first, then blob. A failed blob
delete leaves an orphan that is logged and reported in the DeleteOutcome.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from projectsync.engine.errors import (
    NotFoundError,
    OrphanResourceError,
    PermissionDeniedError,
    ProjectSyncError,
    SessionError,
    TransportError,
    ValidationError,
)
from projectsync.engine.logging import (
    log,
    log_orphan_resource,
    log_record_operation,
    log_security_event,
)
from projectsync.identity.session import AuthSession, SessionUser
from projectsync.records import CollectionSpec, Record, TaskStatus, get_collection, validate_input
from projectsync.security.permissions import can_delete, owner_of
from projectsync.store.base import SERVER_TIMESTAMP, DocumentStore
from projectsync.store.blob import BlobStore

logger = logging.getLogger("projectsync.mutations.gateway")

T = TypeVar("T")

# Called with (record_id, written_fields); may be a coroutine function
CreateHook = Callable[[str, Dict[str, Any]], Any]


@dataclass
class DeleteOutcome:
    """Result of a two-step delete."""

    collection: str
    record_id: str
    deleted: bool
    blob_path: Optional[str] = None
    blob_deleted: bool = False
    orphaned_blob: Optional[str] = None
    orphan: Optional[OrphanResourceError] = None

    @property
    def clean(self) -> bool:
        return self.orphaned_blob is None


def wire_name(spec: CollectionSpec, key: str) -> str:
    """Store field name for a python attribute or wire name."""
    field_info = spec.record_type.model_fields.get(key)
    if field_info is None:
        return key
    return field_info.serialization_alias or field_info.alias or key


class MutationGateway:
    """
    Usage:
        gateway = MutationGateway(store, blobs)
        project_id = await gateway.create("projects", {"name": "Website Redesign"}, session)
        outcome = await gateway.delete("documents", doc_id, session)
    """

    def __init__(self, store: DocumentStore, blobs: Optional[BlobStore] = None):
        self._store = store
        self._blobs = blobs
        self._hooks: Dict[str, List[CreateHook]] = {}

    @property
    def store(self) -> DocumentStore:
        return self._store

    # -------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------

    def on_create(self, collection: str, hook: CreateHook) -> None:
        """Run ``hook`` after every successful create in ``collection``."""
        get_collection(collection)
        self._hooks.setdefault(collection, []).append(hook)

    async def _run_hooks(self, collection: str, record_id: str, data: Dict[str, Any]) -> None:
        for hook in self._hooks.get(collection, []):
            try:
                result = hook(record_id, dict(data))
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # The triggering write already committed; hooks never fail it
                logger.error(
                    f"on_create hook {getattr(hook, '__name__', hook)!r} failed for "
                    f"{collection}/{record_id}: {e}",
                    exc_info=True,
                )

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _require_user(
        session: Optional[AuthSession],
        collection: str,
        operation: str,
    ) -> SessionUser:
        if session is None or not session.is_authenticated:
            raise SessionError("Authentication error.", collection=collection, operation=operation)
        return session.user

    @staticmethod
    async def _store_call(
        awaitable: Awaitable[T],
        collection: str,
        operation: str,
        record_id: Optional[str] = None,
    ) -> T:
        try:
            return await awaitable
        except ProjectSyncError:
            raise
        except Exception as e:
            raise TransportError(
                f"Store {operation} failed: {e}", backend="store",
                collection=collection, record_id=record_id, operation=operation,
            ) from e

    # -------------------------------------------------------------------
    # Create / update
    # -------------------------------------------------------------------

    async def create(
        self,
        collection: str,
        payload: Mapping[str, Any],
        session: Optional[AuthSession],
    ) -> str:
        """Validate, stamp and write a new record. Returns the generated id."""
        spec = get_collection(collection)
        user = self._require_user(session, collection, "create")

        stamped = {spec.timestamp_field, spec.owner_field}
        data = {k: v for k, v in payload.items() if wire_name(spec, k) not in stamped}
        model = validate_input(spec.create_schema, data, collection, "create")

        wire = model.to_wire()
        wire[spec.timestamp_field] = SERVER_TIMESTAMP
        if spec.owner_field:
            wire[spec.owner_field] = user.uid

        try:
            record_id = await self._store_call(self._store.add(collection, wire), collection, "create")
        except ProjectSyncError as e:
            log(log_record_operation("create", collection, user.uid, success=False, error=str(e)))
            raise

        logger.info(f"Created {collection}/{record_id} by {user.uid}")
        log(log_record_operation("create", collection, user.uid, record_id, fields_changed=list(wire)))
        await self._run_hooks(collection, record_id, wire)
        return record_id

    async def update(
        self,
        collection: str,
        record_id: str,
        patch: Mapping[str, Any],
        session: Optional[AuthSession],
    ) -> Dict[str, Any]:
        """
        Apply a partial patch. Immutable fields (owner, parent ids, creation
        timestamp) are rejected. Returns the fields written.
        """
        spec = get_collection(collection)
        user = self._require_user(session, collection, "update")

        frozen = sorted(
            wire_name(spec, k) for k in patch
            if wire_name(spec, k) in spec.immutable_fields
        )
        if frozen:
            raise ValidationError(
                f"{', '.join(frozen)} cannot be changed after creation",
                collection=collection, record_id=record_id, operation="update",
                field_errors={f: "This field cannot be changed." for f in frozen},
            )

        model = validate_input(spec.update_schema, dict(patch), collection, "update")
        wire = model.to_wire(partial=True)
        if not wire:
            logger.debug(f"Empty patch for {collection}/{record_id}; nothing written")
            return {}

        try:
            await self._store_call(
                self._store.update(collection, record_id, wire), collection, "update", record_id,
            )
        except ProjectSyncError as e:
            log(log_record_operation("update", collection, user.uid, record_id,
                                     success=False, error=str(e)))
            raise

        logger.info(f"Updated {collection}/{record_id}: {sorted(wire)}")
        log(log_record_operation("update", collection, user.uid, record_id, fields_changed=list(wire)))
        return wire

    async def set_task_status(
        self,
        task_id: str,
        status: Union[TaskStatus, str],
        session: Optional[AuthSession],
    ) -> None:
        value = status.value if isinstance(status, TaskStatus) else status
        await self.update("tasks", task_id, {"status": value}, session)

    # -------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------

    async def delete(
        self,
        collection: str,
        record_id: str,
        session: Optional[AuthSession],
        record: Optional[Union[Record, Mapping[str, Any]]] = None,
    ) -> DeleteOutcome:
        """
        Ownership-checked delete.

        Uses ``record`` when the caller already holds it (from a subscription),
        otherwise reads it. For blob-bearing collections the blob is deleted
        after the metadata record; a failure there is reported, not raised.
        """
        spec = get_collection(collection)
        user = self._require_user(session, collection, "delete")

        if record is None:
            snapshot = await self._store_call(
                self._store.get(collection, record_id), collection, "read", record_id,
            )
            if not snapshot.exists:
                raise NotFoundError(
                    spec.not_found_message, collection=collection,
                    record_id=record_id, operation="delete",
                )
            data: Dict[str, Any] = dict(snapshot.data)
        elif isinstance(record, Record):
            data = record.model_dump(by_alias=True, mode="json")
        else:
            data = dict(record)

        if not can_delete(spec, data, user):
            owner_id = owner_of(spec, data)
            logger.warning(
                f"Delete of {collection}/{record_id} denied: user {user.uid} is not owner {owner_id}"
            )
            log(log_security_event("permission_denied", collection, record_id, user.uid, owner_id=owner_id))
            raise PermissionDeniedError(
                spec.permission_message,
                collection=collection, record_id=record_id, operation="delete",
                user_id=user.uid, owner_id=owner_id,
            )

        try:
            deleted = await self._store_call(
                self._store.delete(collection, record_id), collection, "delete", record_id,
            )
        except ProjectSyncError as e:
            log(log_record_operation("delete", collection, user.uid, record_id,
                                     success=False, error=str(e)))
            raise

        outcome = DeleteOutcome(collection=collection, record_id=record_id, deleted=deleted)
        logger.info(f"Deleted {collection}/{record_id} by {user.uid}")
        log(log_record_operation("delete", collection, user.uid, record_id))

        blob_path = data.get(spec.blob_field) if spec.blob_field else None
        if blob_path:
            outcome.blob_path = blob_path
            await self._delete_blob(outcome, blob_path)
        return outcome

    async def _delete_blob(self, outcome: DeleteOutcome, path: str) -> None:
        """Second step of a two-step delete. Never raises."""
        if self._blobs is None:
            reason = "no blob store configured"
        else:
            try:
                await self._blobs.delete(path)
                outcome.blob_deleted = True
                return
            except NotFoundError:
                logger.warning(f"Blob '{path}' was already gone ({outcome.collection}/{outcome.record_id})")
                return
            except Exception as e:
                reason = str(e)

        outcome.orphaned_blob = path
        outcome.orphan = OrphanResourceError(
            f"Blob '{path}' outlived its record: {reason}",
            collection=outcome.collection, record_id=outcome.record_id,
            operation="delete", storage_path=path,
        )
        logger.warning(f"Orphaned blob '{path}' after deleting {outcome.collection}/{outcome.record_id}: {reason}")
        log(log_orphan_resource(
            "blob", path,
            collection=outcome.collection, record_id=outcome.record_id, reason=reason,
        ))
