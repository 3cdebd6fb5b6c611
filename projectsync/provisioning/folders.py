"""
ProjectSync Folder Provisioner — gives every new project an external folder.

Run once per created project (Celery task or in-process hook):
1. Read the project; give up if it is gone or has no owner
2. Resolve the owner's email (failure is logged, folder creation continues)
3. Create the folder "{name} [{project_id}]"
4. Grant the owner 'writer' (failure is logged, write-back continues)
5. Write externalFolderId back onto the project

Any failure of steps 3 or 5 is logged and the run ends. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from projectsync.engine.logging import log, log_provisioning_event
from projectsync.identity.session import SessionUser
from projectsync.provisioning.drive import DriveClient
from projectsync.records import PROJECTS
from projectsync.store.base import DocumentStore

logger = logging.getLogger("projectsync.provisioning.folders")


class UserDirectory(Protocol):
    async def get_user(self, uid: str) -> Optional[SessionUser]:
        ...


class FolderProvisioner:
    def __init__(self, store: DocumentStore, users: UserDirectory, drive: DriveClient):
        self._store = store
        self._users = users
        self._drive = drive
        self._pending: Set[asyncio.Task] = set()

    async def provision(self, project_id: str) -> Optional[str]:
        """Provision the folder for ``project_id``. Returns the folder id, or None."""
        try:
            snapshot = await self._store.get(PROJECTS.name, project_id)
        except Exception as e:
            logger.error(f"Could not read project {project_id}: {e}")
            log(log_provisioning_event("provisioning_failed", project_id, error=str(e)))
            return None
        if not snapshot.exists:
            logger.error(f"Project {project_id} not found; no folder created")
            log(log_provisioning_event("provisioning_skipped", project_id, error="project not found"))
            return None

        data = snapshot.data
        existing = data.get("externalFolderId") or data.get("driveFolderId")
        if existing:
            logger.info(f"Project {project_id} already has folder {existing}")
            return existing

        name = data.get("name") or f"Project {project_id}"
        owner_id = data.get("ownerId")
        if not owner_id:
            logger.error(f"Project {project_id} has no ownerId; cannot create or share a folder")
            log(log_provisioning_event("provisioning_skipped", project_id, error="missing ownerId"))
            return None

        logger.info(f"Creating folder for project {project_id} ({name}), owner {owner_id}")
        owner_email = await self._resolve_email(owner_id)

        try:
            folder_id = await self._drive.create_folder(f"{name} [{project_id}]")
            if owner_email:
                await self._grant(folder_id, owner_email)
            else:
                logger.warning(f"Folder {folder_id} for project {project_id} not shared: owner email unknown")
            await self._store.update(PROJECTS.name, project_id, {"externalFolderId": folder_id})
        except Exception as e:
            logger.error(f"Folder provisioning failed for {project_id}: {e}", exc_info=True)
            log(log_provisioning_event("provisioning_failed", project_id,
                                       owner_email=owner_email, error=str(e)))
            return None

        logger.info(f"Project {project_id} linked to folder {folder_id}")
        log(log_provisioning_event("provisioning_completed", project_id,
                                   folder_id=folder_id, owner_email=owner_email))
        return folder_id

    async def _resolve_email(self, owner_id: str) -> Optional[str]:
        try:
            user = await self._users.get_user(owner_id)
        except Exception as e:
            logger.error(f"Could not look up user {owner_id}: {e}")
            return None
        if user is None or not user.email:
            logger.error(f"No email found for user {owner_id}")
            return None
        return user.email

    async def _grant(self, folder_id: str, email: str) -> None:
        try:
            await self._drive.grant_writer(folder_id, email)
        except Exception as e:
            logger.error(f"Granting 'writer' on {folder_id} to {email} failed: {e}")

    # -------------------------------------------------------------------
    # In-process trigger
    # -------------------------------------------------------------------

    def on_project_created(self, project_id: str, data: Dict[str, Any]) -> None:
        """
        Gateway on_create hook: provision in the background so the
        triggering create returns immediately.
        """
        task = asyncio.get_running_loop().create_task(self.provision(project_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for background provisioning runs started by on_project_created."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
