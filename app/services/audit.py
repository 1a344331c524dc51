"""Fire-and-forget audit trail for administrative actions."""

import logging

from sqlalchemy.orm import Session

from app.models.action_log import ActionLog

logger = logging.getLogger(__name__)


def record(db: Session, action: str, user_id: int | None, group_id: int | None = None, **details) -> None:
    logger.info("audit %s by user %s group %s %s", action, user_id, group_id, details or "")
    try:
        db.add(ActionLog(action=action, user_id=user_id, group_id=group_id, details=details))
        db.commit()
    except Exception:
        # the audited change is already committed; losing the log row must not undo it
        db.rollback()
        logger.exception("Could not persist audit entry %s", action)
