"""
Per-group ban list.

Membership and a ban are mutually exclusive for the same (group, user): a ban
evicts the target, and every join path checks ``is_banned`` before adding.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import BadRequest, Conflict, Forbidden
from app.core.locks import group_locks
from app.core.permissions import Identity
from app.models.blacklist import BlacklistEntry
from app.realtime.dispatcher import MEMBER_KICKED, FanoutDispatcher
from app.schemas.blacklist import BlacklistEntryPublic
from app.services import audit
from app.services.guards import detach, get_group_or_404, group_public, require_manager
from app.services.tx import transaction
from app.services.users import get_user_or_404, user_ref, user_refs

logger = logging.getLogger(__name__)


def find_entry(db: Session, group_id: int, user_id: int) -> BlacklistEntry | None:
    return db.execute(
        select(BlacklistEntry).where(
            BlacklistEntry.group_id == group_id,
            BlacklistEntry.user_id == user_id,
        )
    ).scalar_one_or_none()


def is_banned(db: Session, group_id: int, user_id: int) -> bool:
    return find_entry(db, group_id, user_id) is not None


def ban(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    group_id: int,
    target_id: int,
) -> BlacklistEntry:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_manager(group, identity.user_id, "ban users")
        get_user_or_404(db, target_id)

        if target_id == identity.user_id:
            raise BadRequest("you cannot ban yourself")
        if target_id == group.owner_id:
            raise Forbidden("the group owner cannot be banned")
        if is_banned(db, group_id, target_id):
            raise Conflict("user is already banned from this group")

        entry = BlacklistEntry(group_id=group_id, user_id=target_id)
        with transaction(db, conflict="user is already banned from this group"):
            evicted = detach(group, target_id)
            db.add(entry)

        if evicted:
            dispatcher.publish(
                group_id,
                MEMBER_KICKED,
                {
                    "group": group_public(db, group).model_dump(mode="json"),
                    "user": user_ref(db, target_id).model_dump(),
                    "by": identity.user_id,
                    "reason": "banned",
                },
            )
            dispatcher.revoke(group_id, target_id)

    audit.record(db, "group.ban", identity.user_id, group_id, target_user_id=target_id, evicted=evicted)
    return entry


def unban(db: Session, identity: Identity, group_id: int, target_id: int) -> None:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_manager(group, identity.user_id, "unban users")

        entry = find_entry(db, group_id, target_id)
        if entry is None:
            raise BadRequest("user is not banned from this group")

        with transaction(db):
            db.delete(entry)

    audit.record(db, "group.unban", identity.user_id, group_id, target_user_id=target_id)


def list_bans(db: Session, identity: Identity, group_id: int) -> list[BlacklistEntryPublic]:
    group = get_group_or_404(db, group_id)
    require_manager(group, identity.user_id, "view the blacklist")

    entries = db.execute(
        select(BlacklistEntry)
        .where(BlacklistEntry.group_id == group_id)
        .order_by(BlacklistEntry.id.asc())
    ).scalars().all()
    refs = user_refs(db, [e.user_id for e in entries])
    return [
        BlacklistEntryPublic(
            id=e.id,
            group_id=e.group_id,
            user=refs.get(e.user_id) or user_ref(db, e.user_id),
            created_at=e.created_at,
        )
        for e in entries
    ]
