"""
Group membership.

Invariants kept by every mutation here: the owner is a member, admins are a
subset of members, and nobody is both a member and banned. Each mutation runs
under the group's lock and commits once.
"""

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.core.errors import BadRequest, Conflict, Forbidden
from app.core.locks import group_locks
from app.core.permissions import Identity
from app.models.announcement import Announcement
from app.models.blacklist import BlacklistEntry
from app.models.group import Group
from app.models.group_request import GroupRequest
from app.models.membership import GroupAdmin, GroupMember
from app.models.message import Message, MessageReadStatus
from app.realtime.dispatcher import GROUP_DISSOLVED, MEMBER_KICKED, MEMBER_LEFT, FanoutDispatcher
from app.schemas.group import LeaveResult
from app.services import audit
from app.services.blacklist import is_banned
from app.services.guards import (
    detach,
    get_group_or_404,
    group_public,
    require_group_owner,
    require_manager,
    require_member,
)
from app.services.tx import transaction
from app.services.users import user_ref
from app.storage.files import FileStorage

logger = logging.getLogger(__name__)


def create_group(db: Session, identity: Identity, name: str) -> Group:
    name = name.strip()
    if not name:
        raise BadRequest("group name must not be blank")

    with group_locks.hold(("group-name", name)):
        if db.execute(select(Group.id).where(Group.name == name)).first():
            raise Conflict(f"group {name!r} already exists")

        group = Group(
            name=name,
            owner_id=identity.user_id,
            members=[GroupMember(user_id=identity.user_id)],
            admins=[GroupAdmin(user_id=identity.user_id)],
        )
        with transaction(db, conflict=f"group {name!r} already exists"):
            db.add(group)
        db.refresh(group)

    logger.info("Group %s (%s) created by user %s", group.id, group.name, identity.user_id)
    return group


def list_groups(db: Session, identity: Identity) -> list[Group]:
    stmt = select(Group).order_by(Group.id.asc())
    if not identity.is_system_owner:
        stmt = stmt.join(GroupMember, GroupMember.group_id == Group.id).where(
            GroupMember.user_id == identity.user_id
        )
    return list(db.execute(stmt).scalars().all())


def get_group(db: Session, identity: Identity, group_id: int) -> Group:
    group = get_group_or_404(db, group_id)
    if not identity.is_system_owner:
        require_member(group, identity.user_id)
    return group


def add_member(db: Session, group: Group, user_id: int) -> GroupMember:
    """Caller holds the group lock and commits; only request approval gets here."""
    if group.is_member(user_id):
        raise Conflict("user is already a member of this group")
    if is_banned(db, group.id, user_id):
        raise Forbidden("user is banned from this group")

    member = GroupMember(user_id=user_id)
    group.members.append(member)
    return member


def promote_admin(db: Session, identity: Identity, group_id: int, target_id: int) -> Group:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_group_owner(group, identity.user_id, "add admins")

        if not group.is_member(target_id):
            raise BadRequest("user is not a member of this group")
        if group.is_admin(target_id):
            raise BadRequest("user is already an admin")

        with transaction(db):
            group.admins.append(GroupAdmin(user_id=target_id))

    audit.record(db, "group.promote_admin", identity.user_id, group_id, target_user_id=target_id)
    return group


def demote_admin(db: Session, identity: Identity, group_id: int, target_id: int) -> Group:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_group_owner(group, identity.user_id, "remove admins")

        if target_id == group.owner_id:
            raise BadRequest("the group owner cannot be demoted")
        if not group.is_admin(target_id):
            raise BadRequest("user is not an admin")

        with transaction(db):
            group.admins = [a for a in group.admins if a.user_id != target_id]

    audit.record(db, "group.demote_admin", identity.user_id, group_id, target_user_id=target_id)
    return group


def kick(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    group_id: int,
    target_id: int,
) -> Group:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_manager(group, identity.user_id, "kick members")

        if target_id == identity.user_id:
            raise BadRequest("you cannot kick yourself, leave the group instead")
        if not group.is_member(target_id):
            raise BadRequest("user is not a member of this group")
        if target_id == group.owner_id:
            raise Forbidden("the group owner cannot be kicked")

        with transaction(db):
            detach(group, target_id)

        dispatcher.publish(
            group_id,
            MEMBER_KICKED,
            {
                "group": group_public(db, group).model_dump(mode="json"),
                "user": user_ref(db, target_id).model_dump(),
                "by": identity.user_id,
                "reason": "kicked",
            },
        )
        dispatcher.revoke(group_id, target_id)

    audit.record(db, "group.kick", identity.user_id, group_id, target_user_id=target_id)
    return group


def _purge(db: Session, group: Group) -> list[str]:
    """
    Delete the group and everything hanging off it, inside the caller's
    transaction. Returns attachment locators to clean up after commit.
    """
    group_id = group.id
    message_ids = select(Message.id).where(Message.group_id == group_id)

    locators = list(
        db.execute(
            select(Message.file_url).where(
                Message.group_id == group_id,
                Message.file_url.is_not(None),
            )
        ).scalars().all()
    )

    db.execute(delete(MessageReadStatus).where(MessageReadStatus.message_id.in_(message_ids)))
    db.execute(delete(Message).where(Message.group_id == group_id))
    db.execute(delete(GroupRequest).where(GroupRequest.group_id == group_id))
    db.execute(delete(BlacklistEntry).where(BlacklistEntry.group_id == group_id))
    # invitations are kept for audit; their group_name snapshot survives
    db.execute(update(Announcement).where(Announcement.group_id == group_id).values(group_id=None))
    db.delete(group)
    return locators


def _discard_files(storage: FileStorage | None, locators: list[str]) -> None:
    if storage is None:
        return
    for locator in locators:
        storage.delete(locator)


def leave(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    group_id: int,
    storage: FileStorage | None = None,
) -> LeaveResult:
    user_id = identity.user_id
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        if not group.is_member(user_id):
            raise BadRequest("you are not a member of this group")

        new_owner_id = None
        deleted = False
        locators: list[str] = []
        with transaction(db):
            detach(group, user_id)
            if group.owner_id == user_id:
                # succession: first remaining admin, else first remaining member (made admin)
                if group.admins:
                    new_owner_id = group.admins[0].user_id
                elif group.members:
                    new_owner_id = group.members[0].user_id
                    group.admins.append(GroupAdmin(user_id=new_owner_id))
                else:
                    locators = _purge(db, group)
                    deleted = True
                if new_owner_id is not None:
                    group.owner_id = new_owner_id

        result = LeaveResult(
            group_id=group_id,
            group_deleted=deleted,
            new_owner=user_ref(db, new_owner_id) if new_owner_id is not None else None,
            group=None if deleted else group_public(db, group),
        )

        dispatcher.publish(
            group_id,
            MEMBER_LEFT,
            {"user": user_ref(db, user_id).model_dump(), **result.model_dump(mode="json")},
        )
        dispatcher.revoke(group_id, None if deleted else user_id)

    if deleted:
        logger.info("Group %s deleted after its last member left", group_id)
        _discard_files(storage, locators)
    if new_owner_id is not None:
        audit.record(db, "group.ownership_transferred", user_id, group_id, new_owner_id=new_owner_id)
    return result


def dissolve(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    group_id: int,
    storage: FileStorage | None = None,
) -> None:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        if group.owner_id != identity.user_id and not identity.is_system_owner:
            raise Forbidden("only the group owner or the system owner can dissolve a group")

        name = group.name
        # all-or-nothing: a failure part way rolls every delete back, so a retry starts clean
        with transaction(db):
            locators = _purge(db, group)

        dispatcher.publish(group_id, GROUP_DISSOLVED, {"group_id": group_id, "name": name})
        dispatcher.revoke(group_id)

    _discard_files(storage, locators)
    audit.record(db, "group.dissolve", identity.user_id, group_id, name=name, attachments=len(locators))
