from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import Conflict


@contextmanager
def transaction(db: Session, conflict: str = "conflicting change"):
    """Commit once on success; roll everything back on any failure."""
    try:
        yield
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(conflict) from exc
    except BaseException:
        db.rollback()
        raise
