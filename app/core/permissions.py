"""
Role & permission resolution.

Role hierarchy: owner > admin > moderator > user. A requirement is either a
role name (checked by rank) or a permission name (checked against the user's
explicit overrides and the role's default set, where "*" grants everything).
"""

from dataclasses import dataclass, field
from types import MappingProxyType

from app.core.errors import Forbidden

ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_MODERATOR = "moderator"
ROLE_USER = "user"

ALL_PERMISSIONS_MARKER = "*"

ROLE_RANK = MappingProxyType({
    ROLE_OWNER: 4,
    ROLE_ADMIN: 3,
    ROLE_MODERATOR: 2,
    ROLE_USER: 1,
})

DEFAULT_PERMISSIONS = MappingProxyType({
    ROLE_OWNER: frozenset({ALL_PERMISSIONS_MARKER}),
    ROLE_ADMIN: frozenset({
        "manage_users",
        "manage_groups",
        "view_logs",
        "manage_announcements",
        "manage_blacklist",
    }),
    ROLE_MODERATOR: frozenset({"kick_users", "ban_users", "manage_messages", "view_logs"}),
    ROLE_USER: frozenset({"send_messages", "join_groups", "upload_files"}),
})

ALL_ROLES = (ROLE_USER, ROLE_MODERATOR, ROLE_ADMIN, ROLE_OWNER)

ALL_PERMISSIONS = (
    "send_messages",
    "join_groups",
    "upload_files",
    "kick_users",
    "ban_users",
    "manage_messages",
    "view_logs",
    "manage_users",
    "manage_groups",
    "manage_announcements",
    "manage_blacklist",
    "manage_permissions",
)


@dataclass(frozen=True)
class Identity:
    """Verified claim attached to every core operation."""

    user_id: int
    role: str = ROLE_USER
    permissions: frozenset[str] = field(default_factory=frozenset)
    username: str | None = None

    @property
    def is_system_owner(self) -> bool:
        return self.role == ROLE_OWNER


def rank(role: str) -> int:
    return ROLE_RANK.get(role, 0)


def default_permissions_for(role: str) -> frozenset[str]:
    return DEFAULT_PERMISSIONS.get(role, frozenset())


def has_role(identity: Identity, required_role: str) -> bool:
    return rank(identity.role) >= rank(required_role)


def has_permission(identity: Identity, permission: str) -> bool:
    if permission in identity.permissions:
        return True
    defaults = default_permissions_for(identity.role)
    return permission in defaults or ALL_PERMISSIONS_MARKER in defaults


def authorize(identity: Identity, required: str) -> bool:
    if required in ROLE_RANK:
        return has_role(identity, required)
    return has_permission(identity, required)


def require(identity: Identity, required: str) -> None:
    if not authorize(identity, required):
        raise Forbidden(f"requires {required}")
