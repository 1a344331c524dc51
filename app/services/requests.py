"""
Join requests.

    pending -> approved   (owner/admin; the user is added to the group)
    pending -> rejected   (owner/admin; terminal)

Resolved requests are kept for audit. Ban status is checked when the request
is opened and again when it is approved.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import BadRequest, Conflict, Forbidden, NotFound
from app.core.locks import group_locks
from app.core.permissions import Identity
from app.models.group import Group
from app.models.group_request import (
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    GroupRequest,
)
from app.realtime.dispatcher import MEMBER_JOINED, FanoutDispatcher
from app.schemas.group import GroupRequestPublic
from app.services import audit
from app.services.blacklist import is_banned
from app.services.guards import get_group_or_404, group_public, require_manager
from app.services.membership import add_member
from app.services.tx import transaction
from app.services.users import user_ref, user_refs

logger = logging.getLogger(__name__)

DUPLICATE_PENDING = "a join request for this group is already pending"


def find_pending(db: Session, group_id: int, user_id: int) -> GroupRequest | None:
    return db.execute(
        select(GroupRequest).where(
            GroupRequest.group_id == group_id,
            GroupRequest.user_id == user_id,
            GroupRequest.status == REQUEST_PENDING,
        )
    ).scalar_one_or_none()


def open_request(db: Session, group: Group, user_id: int, reuse_pending: bool = False) -> GroupRequest:
    """
    Stage a pending request for user_id. The caller holds the group lock and
    commits. With reuse_pending an existing pending request is returned
    instead of raising Conflict.
    """
    if group.is_member(user_id):
        raise Conflict("you are already a member of this group")
    if is_banned(db, group.id, user_id):
        raise Forbidden("you are banned from this group")

    existing = find_pending(db, group.id, user_id)
    if existing is not None:
        if reuse_pending:
            return existing
        raise Conflict(DUPLICATE_PENDING)

    request = GroupRequest(group_id=group.id, user_id=user_id, status=REQUEST_PENDING)
    db.add(request)
    return request


def create_request(db: Session, identity: Identity, group_id: int) -> GroupRequest:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        with transaction(db, conflict=DUPLICATE_PENDING):
            request = open_request(db, group, identity.user_id)
        db.refresh(request)

    logger.info("User %s asked to join group %s (request %s)", identity.user_id, group_id, request.id)
    return request


def _pending_in_group(db: Session, group: Group, request_id: int) -> GroupRequest:
    request = db.get(GroupRequest, request_id)
    if not request:
        raise NotFound(f"request {request_id} not found")
    if request.group_id != group.id:
        raise BadRequest("request does not belong to this group")
    if request.status != REQUEST_PENDING:
        raise Conflict(f"request has already been {request.status}")
    return request


def approve_request(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    group_id: int,
    request_id: int,
) -> GroupRequest:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_manager(group, identity.user_id, "approve join requests")
        request = _pending_in_group(db, group, request_id)

        with transaction(db):
            # re-checks membership and the ban list: either may have changed since the request
            add_member(db, group, request.user_id)
            request.status = REQUEST_APPROVED

        dispatcher.publish(
            group_id,
            MEMBER_JOINED,
            {
                "group": group_public(db, group).model_dump(mode="json"),
                "user": user_ref(db, request.user_id).model_dump(),
                "request_id": request.id,
            },
        )

    audit.record(
        db,
        "group.request_approved",
        identity.user_id,
        group_id,
        request_id=request_id,
        target_user_id=request.user_id,
    )
    return request


def reject_request(db: Session, identity: Identity, group_id: int, request_id: int) -> GroupRequest:
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_manager(group, identity.user_id, "reject join requests")
        request = _pending_in_group(db, group, request_id)

        with transaction(db):
            request.status = REQUEST_REJECTED

    audit.record(
        db,
        "group.request_rejected",
        identity.user_id,
        group_id,
        request_id=request_id,
        target_user_id=request.user_id,
    )
    return request


def list_requests(db: Session, identity: Identity, group_id: int) -> list[GroupRequest]:
    group = get_group_or_404(db, group_id)
    require_manager(group, identity.user_id, "view join requests")
    return list(
        db.execute(
            select(GroupRequest)
            .where(GroupRequest.group_id == group_id, GroupRequest.status == REQUEST_PENDING)
            .order_by(GroupRequest.id.asc())
        ).scalars().all()
    )


def request_public(db: Session, request: GroupRequest, refs=None) -> GroupRequestPublic:
    refs = refs if refs is not None else user_refs(db, [request.user_id])
    return GroupRequestPublic(
        id=request.id,
        group_id=request.group_id,
        user=refs.get(request.user_id) or user_ref(db, request.user_id),
        status=request.status,
        created_at=request.created_at,
    )
