from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.auth import get_current_user
from app.core.permissions import Identity
from app.schemas.log import ActionLogPage, ActionLogPublic
from app.services import logs

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("", response_model=ActionLogPage)
def list_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    action: str | None = Query(None),
    user_id: int | None = Query(None, alias="userId"),
    start: datetime | None = Query(None, alias="startDate"),
    end: datetime | None = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return logs.list_logs(db, current_user, page, limit, action, user_id, start, end)


@router.get("/{log_id}", response_model=ActionLogPublic)
def get_log(
    log_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return logs.get_log(db, current_user, log_id)


@router.delete("/{log_id}")
def delete_log(
    log_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    logs.delete_log(db, current_user, log_id)
    return {"ok": True, "deleted_log_id": log_id}


@router.delete("")
def clear_logs(
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return {"ok": True, "deleted": logs.clear_logs(db, current_user)}
