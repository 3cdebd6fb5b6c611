"""
ProjectSync Provisioning Tasks — Celery entry points for folder provisioning.

Celery Tasks:
    projectsync.provisioning.provision_project_folder(project_id)

The task is enqueued by the gateway's projects on_create hook
(enqueue_provisioning) and runs FolderProvisioner in a worker with its own
store, identity lookup and Drive client built from projectsync.yaml. The
worker's store publishes its write-back on the Redis change feed, so project
subscriptions in other processes see externalFolderId arrive.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from celery import Celery

from projectsync.engine.config import PlatformConfig, get_config
from projectsync.engine.errors import ConfigError

logger = logging.getLogger("projectsync.provisioning.tasks")

TASK_NAME = "projectsync.provisioning.provision_project_folder"

# ---------------------------------------------------------------------------
# Celery app (configured from projectsync.yaml)
# ---------------------------------------------------------------------------

_celery_app: Optional[Celery] = None


def get_celery_app() -> Celery:
    """Get or create the Celery app singleton."""
    global _celery_app
    if _celery_app is None:
        _celery_app = _create_celery_app()
    return _celery_app


def _create_celery_app() -> Celery:
    try:
        config = get_config()
    except ConfigError as e:
        logger.warning(f"Using default Celery settings: {e}")
        config = PlatformConfig()

    app = Celery(
        "projectsync",
        broker=config.celery.broker,
        backend=config.celery.result_backend,
    )
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_default_queue=config.celery.queue,
        task_routes={TASK_NAME: {"queue": config.celery.queue}},
        task_acks_late=True,
        worker_prefetch_multiplier=1,
    )
    return app


# ---------------------------------------------------------------------------
# Worker-side run
# ---------------------------------------------------------------------------

async def run_provisioning(project_id: str, config: Optional[PlatformConfig] = None) -> Dict[str, Any]:
    """Build the collaborators from config and provision one project."""
    from projectsync.engine.runtime import ProjectSyncRuntime
    from projectsync.identity.session import AuthSession
    from projectsync.provisioning.drive import DriveClient
    from projectsync.provisioning.folders import FolderProvisioner

    config = config or get_config()
    # Redis carries the externalFolderId write-back to the web process's live queries
    with ProjectSyncRuntime(config) as runtime:
        users = runtime.identity(AuthSession(ready=True))
        async with DriveClient(
            base_url=config.drive.base_url,
            token=config.drive.token,
            timeout=config.drive.timeout,
            parent_folder_id=config.drive.parent_folder_id,
        ) as drive:
            folder_id = await FolderProvisioner(runtime.store, users, drive).provision(project_id)

    return {
        "status": "completed" if folder_id else "failed",
        "project_id": project_id,
        "folder_id": folder_id,
    }


celery_app = get_celery_app()


@celery_app.task(name=TASK_NAME)
def provision_project_folder(project_id: str) -> Dict[str, Any]:
    """
    Celery task: provision the external folder for a new project.

    Failures are logged inside the run and never retried.
    """
    return asyncio.run(run_provisioning(project_id))


def enqueue_provisioning(project_id: str, data: Dict[str, Any]) -> None:
    """Gateway on_create hook for projects: hand the run to a Celery worker."""
    provision_project_folder.delay(project_id)
    logger.info(f"Queued folder provisioning for project {project_id}")
