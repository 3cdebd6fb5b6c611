"""
ProjectSync — realtime project-management data layer.

Live, scoped subscriptions over a document store, an ownership-checked
mutation gateway, and a blob upload coordinator, for projects and their
tasks, documents, expenses and time entries.
"""

__version__ = "1.0.0"
__all__ = [
    "db",
    "documents",
    "engine",
    "identity",
    "mutations",
    "provisioning",
    "records",
    "security",
    "store",
    "sync",
]
