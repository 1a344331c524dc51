from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_dispatcher
from app.core.auth import get_current_user
from app.core.permissions import Identity
from app.realtime.dispatcher import FanoutDispatcher
from app.schemas.blacklist import BlacklistEntryPublic
from app.schemas.group import MemberTarget
from app.services import blacklist
from app.services.users import user_ref

router = APIRouter(prefix="/blacklist", tags=["blacklist"])


@router.post("/{group_id}", response_model=BlacklistEntryPublic)
def ban_user(
    group_id: int,
    payload: MemberTarget,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
):
    entry = blacklist.ban(db, dispatcher, current_user, group_id, payload.user_id)
    return BlacklistEntryPublic(
        id=entry.id,
        group_id=entry.group_id,
        user=user_ref(db, entry.user_id),
        created_at=entry.created_at,
    )


@router.delete("/{group_id}/{user_id}")
def unban_user(
    group_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    blacklist.unban(db, current_user, group_id, user_id)
    return {"ok": True, "group_id": group_id, "user_id": user_id}


@router.get("/{group_id}", response_model=list[BlacklistEntryPublic])
def list_blacklist(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return blacklist.list_bans(db, current_user, group_id)
