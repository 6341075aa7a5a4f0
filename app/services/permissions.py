"""
Shared permission checks used by the promotion and payment services.
"""

from typing import Optional

from app.models.users import User
from app.services.errors import UnauthorizedError


def is_admin(user: Optional[User]) -> bool:
    return user is not None and user.is_admin


def is_resource_owner(user: Optional[User], owner_id: Optional[str]) -> bool:
    return user is not None and owner_id is not None and user.uid == owner_id


def is_admin_or_owner(user: Optional[User], owner_id: Optional[str]) -> bool:
    return is_admin(user) or is_resource_owner(user, owner_id)


def require_admin(user: Optional[User], action: str) -> None:
    if not is_admin(user):
        raise UnauthorizedError(f"Unauthorized: admin role required to {action}")


def require_admin_or_owner(user: Optional[User], owner_id: Optional[str], action: str) -> None:
    if not is_admin_or_owner(user, owner_id):
        raise UnauthorizedError(f"Unauthorized: not allowed to {action}")
