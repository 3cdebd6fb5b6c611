"""
ProjectSync Runtime — builds the collaborators from projectsync.yaml.

Ties together:
- Structured event logging (AsyncLogQueue)
- Database engine + SqlDocumentStore (with the Redis change feed when reachable)
- LocalBlobStore
- MutationGateway (with the provisioning hook when enabled)
- UploadCoordinator + DocumentService
- SubscriptionManager
- Session token store (Redis when reachable) and LocalIdentityProvider

Lifecycle:
    runtime = ProjectSyncRuntime(config)
    runtime.startup()
    ...
    runtime.shutdown()
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from projectsync.db.base import engine_registry
from projectsync.db.session import init_db
from projectsync.documents.service import DocumentService
from projectsync.documents.uploads import UploadCoordinator
from projectsync.engine.cache import SessionTokenStore, create_session_token_store
from projectsync.engine.config import PlatformConfig, get_config
from projectsync.engine.logging import (
    AsyncLogQueue,
    init_logging,
    log,
    log_system_event,
    shutdown_logging,
)
from projectsync.identity.provider import LocalIdentityProvider
from projectsync.identity.session import AuthSession
from projectsync.mutations.gateway import MutationGateway
from projectsync.store.blob import LocalBlobStore
from projectsync.store.changes import ChangeFeed, create_change_feed
from projectsync.store.sql import SqlDocumentStore
from projectsync.sync.subscriptions import SubscriptionManager

logger = logging.getLogger("projectsync.engine.runtime")


class ProjectSyncRuntime:
    """
    Single owner of the configured subsystems.

    Args:
        config: Loaded configuration; defaults to get_config().
        use_redis: Try Redis for session tokens. Falls back to the
            in-process store when Redis does not answer.
    """

    def __init__(self, config: Optional[PlatformConfig] = None, use_redis: bool = True):
        self.config = config or get_config()
        self._use_redis = use_redis

        # Subsystems (initialized in startup())
        self.log_queue: Optional[AsyncLogQueue] = None
        self.session_factory = None
        self.change_feed: Optional[ChangeFeed] = None
        self.store: Optional[SqlDocumentStore] = None
        self.blobs: Optional[LocalBlobStore] = None
        self.gateway: Optional[MutationGateway] = None
        self.uploads: Optional[UploadCoordinator] = None
        self.documents: Optional[DocumentService] = None
        self.subscriptions: Optional[SubscriptionManager] = None
        self._tokens: Optional[SessionTokenStore] = None

        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def startup(self) -> None:
        """Initialize all subsystems."""
        if self._started:
            logger.warning("Runtime already started")
            return

        config = self.config
        logger.info(f"Starting {config.name} runtime ({config.environment})...")

        # 1. Logging
        queue_cfg = config.logging.async_queue
        self.log_queue = init_logging(
            log_dir=config.logging.directory,
            flush_interval_ms=queue_cfg.flush_interval_ms,
            flush_batch_size=queue_cfg.flush_batch_size,
            max_queue_size=queue_cfg.max_queue_size,
        )

        # 2. Database + document store
        self.session_factory = init_db(
            config.database.url,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
            pool_recycle=config.database.pool_recycle,
            pool_pre_ping=config.database.pool_pre_ping,
        )
        if self._use_redis and config.redis.change_feed:
            self.change_feed = create_change_feed(config.redis.url, db=config.redis.session_db)
        self.store = SqlDocumentStore(self.session_factory, change_feed=self.change_feed)

        # 3. Blob storage
        self.blobs = LocalBlobStore(
            config.storage.root,
            chunk_size=config.storage.chunk_size,
            public_base_url=config.storage.public_base_url,
        )

        # 4. Mutations
        self.gateway = MutationGateway(self.store, self.blobs)
        if config.drive.provision_on_create:
            from projectsync.provisioning.tasks import enqueue_provisioning
            self.gateway.on_create("projects", enqueue_provisioning)

        # 5. Uploads + document workflows
        self.uploads = UploadCoordinator(self.blobs, max_upload_size_mb=config.storage.max_upload_size_mb)
        self.documents = DocumentService(
            self.gateway, self.uploads, receipt_mime_types=config.receipt_mime_types,
        )

        # 6. Live queries
        self.subscriptions = SubscriptionManager(self.store)

        self._started = True
        log(log_system_event("runtime_started", details=self._subsystem_status()))
        logger.info(f"{config.name} runtime started")

    def shutdown(self) -> None:
        """Close subscriptions, cancel uploads, flush the log queue."""
        if not self._started:
            return

        logger.info("Shutting down runtime...")
        if self.subscriptions is not None:
            self.subscriptions.close_all()
        if self.uploads is not None:
            cancelled = self.uploads.cancel_all()
            if cancelled:
                logger.warning(f"Cancelled {cancelled} in-flight upload(s)")

        if self.store is not None:
            self.store.close()
        if self.change_feed is not None:
            self.change_feed.close()
            self.change_feed = None

        log(log_system_event("runtime_stopped"))
        shutdown_logging()
        engine_registry.dispose("store")
        self.log_queue = None
        self._started = False
        logger.info("Runtime stopped")

    def __enter__(self) -> "ProjectSyncRuntime":
        self.startup()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    # -----------------------------------------------------------------------
    # Identity
    # -----------------------------------------------------------------------

    @property
    def token_store(self) -> SessionTokenStore:
        """Session token store, created on first use."""
        if self._tokens is None:
            ttl = self.config.security.session_timeout
            if self._use_redis:
                self._tokens = create_session_token_store(
                    self.config.redis.url, db=self.config.redis.session_db, ttl=ttl,
                )
            else:
                self._tokens = SessionTokenStore(ttl=ttl)
        return self._tokens

    def identity(self, auth_session: Optional[AuthSession] = None) -> LocalIdentityProvider:
        """Identity provider bound to ``auth_session`` (a fresh one when omitted)."""
        self._require_started()
        return LocalIdentityProvider(
            self.session_factory,
            auth_session or AuthSession(),
            self.token_store,
            password_min_length=self.config.security.password_min_length,
        )

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("Runtime not started; call startup() first")

    def _subsystem_status(self) -> Dict[str, Any]:
        return {
            "change_feed": type(self.change_feed).__name__ if self.change_feed else None,
            "database": self.config.database.url.split("://", 1)[0],
            "storage_root": self.config.storage.root,
            "provision_on_create": self.config.drive.provision_on_create,
        }
