"""Request identity supplied by the upstream auth layer.

The headers are trusted as-is; verifying them is the gateway's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fastapi import HTTPException, Request, status


class AccessLevel(str, Enum):
    admin = "admin"
    customer = "customer"
    none = "none"


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: str | None
    access_level: AccessLevel = AccessLevel.none

    @property
    def is_admin(self) -> bool:
        return self.access_level == AccessLevel.admin

    def can_manage(self, owner_id: str) -> bool:
        return self.is_admin or (
            self.access_level == AccessLevel.customer and self.user_id == owner_id
        )


def get_identity(request: Request) -> Identity:
    user_id = (request.headers.get("X-User-Id") or "").strip() or None
    raw_level = (request.headers.get("X-Access-Level") or "none").strip().lower()
    try:
        level = AccessLevel(raw_level)
    except ValueError:
        level = AccessLevel.none
    return Identity(user_id=user_id, access_level=level)


def require_user(request: Request) -> Identity:
    """Dependency requiring a user id (any access level)."""
    identity = get_identity(request)
    if identity.user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="User identity required"
        )
    return identity


def require_admin(request: Request) -> Identity:
    """Dependency to require admin access."""
    identity = get_identity(request)
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return identity


def ensure_owner_access(identity: Identity, owner_id: str) -> None:
    if not identity.can_manage(owner_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to manage this owner's flows"
        )
