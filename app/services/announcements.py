"""
System announcements and group invitations.

An invitation is an announcement addressed to one user:

    invitation_status: pending -> accepted   (spawns a pending join request)
                       pending -> rejected   (terminal)

Only a recipient may respond, and only once.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import BadRequest, Conflict, Forbidden, NotFound
from app.core.locks import group_locks
from app.core.permissions import Identity
from app.models.announcement import (
    INVITATION_ACCEPTED,
    INVITATION_PENDING,
    INVITATION_REJECTED,
    STATUS_READ,
    STATUS_RESPONDED,
    STATUS_UNREAD,
    TYPE_ANNOUNCEMENT,
    TYPE_INVITATION,
    Announcement,
    AnnouncementRecipient,
)
from app.models.group_request import GroupRequest
from app.models.user import User
from app.schemas.announcement import AnnouncementPublic
from app.services import audit
from app.services.guards import get_group_or_404, require_member
from app.services.requests import open_request
from app.services.tx import transaction
from app.services.users import get_user_or_404, user_ref

logger = logging.getLogger(__name__)


def create_announcement(db: Session, identity: Identity, content: str) -> Announcement:
    if not identity.is_system_owner:
        raise Forbidden("only the owner can publish system announcements")

    user_ids = db.execute(select(User.id).order_by(User.id.asc())).scalars().all()
    announcement = Announcement(
        type=TYPE_ANNOUNCEMENT,
        content=content,
        sender_id=identity.user_id,
        recipients=[AnnouncementRecipient(user_id=uid) for uid in user_ids],
    )
    with transaction(db):
        db.add(announcement)
    db.refresh(announcement)

    audit.record(db, "announcement.create", identity.user_id, announcement_id=announcement.id)
    return announcement


def create_invitation(db: Session, identity: Identity, group_id: int, recipient_id: int) -> Announcement:
    group = get_group_or_404(db, group_id)
    require_member(group, identity.user_id)
    get_user_or_404(db, recipient_id)

    if group.is_member(recipient_id):
        raise Conflict("user is already a member of this group")

    invitation = Announcement(
        type=TYPE_INVITATION,
        content=f"You are invited to join {group.name}",
        sender_id=identity.user_id,
        recipients=[AnnouncementRecipient(user_id=recipient_id)],
        group_id=group.id,
        group_name=group.name,
        invitation_status=INVITATION_PENDING,
    )
    with transaction(db):
        db.add(invitation)
    db.refresh(invitation)

    logger.info("User %s invited user %s to group %s", identity.user_id, recipient_id, group_id)
    return invitation


def list_for_user(db: Session, identity: Identity) -> list[tuple[Announcement, str]]:
    rows = db.execute(
        select(Announcement, AnnouncementRecipient.status)
        .join(AnnouncementRecipient, AnnouncementRecipient.announcement_id == Announcement.id)
        .where(
            AnnouncementRecipient.user_id == identity.user_id,
            AnnouncementRecipient.status.in_((STATUS_UNREAD, STATUS_READ)),
        )
        .order_by(Announcement.created_at.desc(), Announcement.id.desc())
    ).all()
    return [(a, status) for a, status in rows]


def _get_for_recipient(db: Session, identity: Identity, announcement_id: int):
    announcement = db.get(Announcement, announcement_id)
    if not announcement:
        raise NotFound(f"announcement {announcement_id} not found")
    recipient = announcement.recipient(identity.user_id)
    if recipient is None:
        raise Forbidden("you are not a recipient of this announcement")
    return announcement, recipient


def respond(
    db: Session,
    identity: Identity,
    announcement_id: int,
    accept: bool,
) -> tuple[Announcement, GroupRequest | None]:
    with group_locks.hold(("invitation", announcement_id)):
        invitation, recipient = _get_for_recipient(db, identity, announcement_id)
        if invitation.type != TYPE_INVITATION:
            raise BadRequest("this announcement is not an invitation")
        if invitation.invitation_status != INVITATION_PENDING:
            raise Conflict(f"invitation has already been {invitation.invitation_status}")

        request = None
        if accept:
            if invitation.group_id is None:
                raise NotFound("the group no longer exists")
            with group_locks.hold(invitation.group_id):
                group = get_group_or_404(db, invitation.group_id)
                with transaction(db, conflict="a join request for this group is already pending"):
                    request = open_request(db, group, identity.user_id, reuse_pending=True)
                    invitation.invitation_status = INVITATION_ACCEPTED
                    recipient.status = STATUS_RESPONDED
            db.refresh(request)
        else:
            with transaction(db):
                invitation.invitation_status = INVITATION_REJECTED
                recipient.status = STATUS_RESPONDED

    logger.info(
        "User %s %s invitation %s",
        identity.user_id,
        "accepted" if accept else "rejected",
        announcement_id,
    )
    return invitation, request


def mark_read(db: Session, identity: Identity, announcement_id: int) -> Announcement:
    announcement, recipient = _get_for_recipient(db, identity, announcement_id)
    if recipient.status == STATUS_UNREAD:
        with transaction(db):
            recipient.status = STATUS_READ
    return announcement


def announcement_public(db: Session, announcement: Announcement, status: str) -> AnnouncementPublic:
    return AnnouncementPublic(
        id=announcement.id,
        type=announcement.type,
        content=announcement.content,
        sender=user_ref(db, announcement.sender_id),
        status=status,
        created_at=announcement.created_at,
        group_id=announcement.group_id,
        group_name=announcement.group_name,
        invitation_status=announcement.invitation_status,
    )
