"""Group lookups and the membership checks every group operation starts with."""

from sqlalchemy.orm import Session

from app.core.errors import Forbidden, NotFound
from app.models.group import Group
from app.schemas.group import GroupPublic
from app.services.users import user_ref, user_refs


def get_group_or_404(db: Session, group_id: int) -> Group:
    group = db.get(Group, group_id)
    if not group:
        raise NotFound(f"group {group_id} not found")
    return group


def require_member(group: Group, user_id: int) -> None:
    if not group.is_member(user_id):
        raise Forbidden("you are not a member of this group")


def require_manager(group: Group, user_id: int, action: str) -> None:
    if not group.is_manager(user_id):
        raise Forbidden(f"only the group owner or an admin can {action}")


def require_group_owner(group: Group, user_id: int, action: str) -> None:
    if group.owner_id != user_id:
        raise Forbidden(f"only the group owner can {action}")


def detach(group: Group, user_id: int) -> bool:
    """Drop user_id from members and admins. Returns whether they were a member."""
    was_member = group.is_member(user_id)
    group.members = [m for m in group.members if m.user_id != user_id]
    group.admins = [a for a in group.admins if a.user_id != user_id]
    return was_member


def group_public(db: Session, group: Group) -> GroupPublic:
    refs = user_refs(db, [group.owner_id, *group.member_ids])
    return GroupPublic(
        id=group.id,
        name=group.name,
        owner=refs.get(group.owner_id) or user_ref(db, group.owner_id),
        admins=[refs[uid] for uid in group.admin_ids if uid in refs],
        members=[refs[uid] for uid in group.member_ids if uid in refs],
        created_at=group.created_at,
    )
