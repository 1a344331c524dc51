from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_dispatcher, get_storage
from app.core.auth import get_current_user
from app.core.permissions import Identity
from app.realtime.dispatcher import FanoutDispatcher
from app.schemas.group import (
    GroupCreate,
    GroupPublic,
    GroupRequestPublic,
    LeaveResult,
    MemberTarget,
)
from app.services import membership, requests
from app.services.guards import group_public
from app.services.users import user_refs
from app.storage.files import FileStorage

router = APIRouter(prefix="/groups", tags=["groups"])


@router.post("", response_model=GroupPublic)
def create_group(
    payload: GroupCreate,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    group = membership.create_group(db, current_user, payload.name)
    return group_public(db, group)


@router.get("", response_model=list[GroupPublic])
def list_groups(
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return [group_public(db, g) for g in membership.list_groups(db, current_user)]


@router.get("/{group_id}", response_model=GroupPublic)
def get_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return group_public(db, membership.get_group(db, current_user, group_id))


@router.post("/{group_id}/join", response_model=GroupRequestPublic)
def join_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    # joining always goes through a request the owner or an admin must approve
    request = requests.create_request(db, current_user, group_id)
    return requests.request_public(db, request)


@router.post("/{group_id}/leave", response_model=LeaveResult)
def leave_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
    storage: FileStorage = Depends(get_storage),
):
    return membership.leave(db, dispatcher, current_user, group_id, storage=storage)


@router.post("/{group_id}/admins", response_model=GroupPublic)
def add_admin(
    group_id: int,
    payload: MemberTarget,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    group = membership.promote_admin(db, current_user, group_id, payload.user_id)
    return group_public(db, group)


@router.delete("/{group_id}/admins/{user_id}", response_model=GroupPublic)
def remove_admin(
    group_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    group = membership.demote_admin(db, current_user, group_id, user_id)
    return group_public(db, group)


@router.post("/{group_id}/kick", response_model=GroupPublic)
def kick_member(
    group_id: int,
    payload: MemberTarget,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
):
    group = membership.kick(db, dispatcher, current_user, group_id, payload.user_id)
    return group_public(db, group)


@router.get("/{group_id}/requests", response_model=list[GroupRequestPublic])
def list_requests(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    pending = requests.list_requests(db, current_user, group_id)
    refs = user_refs(db, [r.user_id for r in pending])
    return [requests.request_public(db, r, refs) for r in pending]


@router.put("/{group_id}/requests/{request_id}/approve", response_model=GroupRequestPublic)
def approve_request(
    group_id: int,
    request_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
):
    request = requests.approve_request(db, dispatcher, current_user, group_id, request_id)
    return requests.request_public(db, request)


@router.put("/{group_id}/requests/{request_id}/reject", response_model=GroupRequestPublic)
def reject_request(
    group_id: int,
    request_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    request = requests.reject_request(db, current_user, group_id, request_id)
    return requests.request_public(db, request)


@router.delete("/{group_id}")
def dissolve_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
    storage: FileStorage = Depends(get_storage),
):
    membership.dissolve(db, dispatcher, current_user, group_id, storage=storage)
    return {"ok": True, "deleted_group_id": group_id}
