"""ProjectSync Sync — live subscriptions and the editing-surface action boundary."""

from projectsync.sync.actions import EditingSurface  # noqa: F401
from projectsync.sync.subscriptions import (  # noqa: F401
    LOADING,
    Data,
    DocumentSubscription,
    Error,
    ListBinding,
    Loading,
    NotFound,
    Subscription,
    SubscriptionManager,
)

__all__ = [
    "EditingSurface",
    "LOADING",
    "Data",
    "DocumentSubscription",
    "Error",
    "ListBinding",
    "Loading",
    "NotFound",
    "Subscription",
    "SubscriptionManager",
]
