"""
ProjectSync Permissions — the single ownership predicate used before deletes.

A record may be deleted by the user recorded in its collection's owner field
(ownerId / uploaderId / userId). Collections without an owner field (tasks)
may be deleted by any authenticated user. These checks are advisory: they
stop the client from issuing the call, they do not protect the store.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from projectsync.identity.session import SessionUser
from projectsync.records import CollectionSpec, Record, get_collection

logger = logging.getLogger("projectsync.security.permissions")


def owner_of(spec: CollectionSpec, record: Union[Record, Mapping[str, Any]]) -> Optional[str]:
    """Owner id recorded on ``record`` for ``spec``'s owner field, if any."""
    if spec.owner_field is None:
        return None
    if isinstance(record, Record):
        data = record.model_dump(by_alias=True)
    else:
        data = record
    value = data.get(spec.owner_field)
    return str(value) if value is not None else None


def can_delete(
    collection: Union[str, CollectionSpec],
    record: Union[Record, Mapping[str, Any]],
    session_user: Optional[SessionUser],
) -> bool:
    """
    True when ``session_user`` may delete ``record``.

    Anonymous sessions may never delete. A record whose owner field is
    missing can only be deleted when the collection has no owner field.
    """
    if session_user is None:
        return False
    spec = get_collection(collection) if isinstance(collection, str) else collection
    if spec.owner_field is None:
        return True
    owner = owner_of(spec, record)
    return owner is not None and owner == session_user.uid
