"""ProjectSync Store — remote document store, change feed and blob storage boundaries."""

from projectsync.store.base import (  # noqa: F401
    ASCENDING,
    DESCENDING,
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    Query,
)
from projectsync.store.blob import BlobStore, LocalBlobStore  # noqa: F401
from projectsync.store.changes import Change, ChangeFeed, LocalChangeFeed, RedisChangeFeed  # noqa: F401
from projectsync.store.sql import SqlDocumentStore  # noqa: F401

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "SERVER_TIMESTAMP",
    "DocumentSnapshot",
    "DocumentStore",
    "Query",
    "BlobStore",
    "LocalBlobStore",
    "Change",
    "ChangeFeed",
    "LocalChangeFeed",
    "RedisChangeFeed",
    "SqlDocumentStore",
]
