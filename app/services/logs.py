import logging
import math
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.errors import BadRequest, Forbidden, NotFound
from app.core.permissions import Identity, require
from app.core.timeutils import to_utc_naive
from app.models.action_log import ActionLog
from app.schemas.log import ActionLogPage, ActionLogPublic

logger = logging.getLogger(__name__)


def _require_owner(identity: Identity) -> None:
    if not identity.is_system_owner:
        raise Forbidden("only the owner can delete audit logs")


def list_logs(
    db: Session,
    identity: Identity,
    page: int = 1,
    limit: int = 50,
    action: str | None = None,
    user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> ActionLogPage:
    require(identity, "view_logs")

    start = to_utc_naive(start) if start else None
    end = to_utc_naive(end) if end else None
    if start and end and start > end:
        raise BadRequest("startDate must not be after endDate")

    conditions = []
    if action:
        conditions.append(ActionLog.action == action)
    if user_id is not None:
        conditions.append(ActionLog.user_id == user_id)
    if start:
        conditions.append(ActionLog.created_at >= start)
    if end:
        conditions.append(ActionLog.created_at <= end)

    total = db.execute(select(func.count()).select_from(ActionLog).where(*conditions)).scalar_one()
    rows = db.execute(
        select(ActionLog)
        .where(*conditions)
        .order_by(ActionLog.created_at.desc(), ActionLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return ActionLogPage(
        logs=[ActionLogPublic.model_validate(r) for r in rows],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


def get_log(db: Session, identity: Identity, log_id: int) -> ActionLog:
    require(identity, "view_logs")
    entry = db.get(ActionLog, log_id)
    if not entry:
        raise NotFound(f"log {log_id} not found")
    return entry


def delete_log(db: Session, identity: Identity, log_id: int) -> None:
    _require_owner(identity)
    entry = db.get(ActionLog, log_id)
    if not entry:
        raise NotFound(f"log {log_id} not found")
    db.delete(entry)
    db.commit()
    logger.info("User %s deleted audit entry %s", identity.user_id, log_id)


def clear_logs(db: Session, identity: Identity) -> int:
    _require_owner(identity)
    result = db.execute(delete(ActionLog))
    db.commit()
    logger.warning("User %s cleared %s audit entries", identity.user_id, result.rowcount)
    return result.rowcount
