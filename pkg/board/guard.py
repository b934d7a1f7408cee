"""
Ownership guard.

Every read, mutation and bulk operation on a user's items passes through
here before storage is touched. Items of another owner are never scoped
away silently: the caller gets NotFound or Forbidden.
"""
from enum import Enum
from typing import Optional

from .errors import NotFound, Forbidden


class Access(Enum):
    ALLOWED = "allowed"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


def check_access(principal: str, item) -> Access:
    """Decide access for ``principal`` on a resolved item (or None)."""
    if item is None:
        return Access.NOT_FOUND
    if str(item.owner) != str(principal):
        return Access.FORBIDDEN
    return Access.ALLOWED


def authorize(principal: str, item, kind: str = "Item"):
    """
    Raise unless ``principal`` owns ``item``. Returns the item on success.

    The message names only the kind of resource, never details of the
    other owner's data.
    """
    access = check_access(principal, item)
    if access is Access.NOT_FOUND:
        raise NotFound(f"{kind} not found")
    if access is Access.FORBIDDEN:
        raise Forbidden("Not authorized")
    return item


def owned_ids(principal: str, owners: dict, ids) -> list:
    """
    Bulk form of the guard for reorder submissions.

    ``owners`` maps id → owner for every id that resolved. Ids that did not
    resolve, or belong to someone else, are dropped; order and first
    occurrence of the rest are preserved.
    """
    seen = set()
    kept = []
    for item_id in ids:
        if item_id in seen:
            continue
        seen.add(item_id)
        owner: Optional[str] = owners.get(item_id)
        if owner is not None and str(owner) == str(principal):
            kept.append(item_id)
    return kept
