from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.permissions import Identity
from app.core.security import decode_access_token
from app.models.user import User

security = HTTPBearer(auto_error=False)


def identity_for(user: User) -> Identity:
    return Identity(
        user_id=user.id,
        role=user.role,
        permissions=frozenset(user.permissions or ()),
        username=user.username,
    )


def identity_from_token(db: Session, token: str | None) -> Identity:
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        payload = decode_access_token(token)
        sub = payload.get("sub")
        if not sub:
            raise HTTPException(status_code=401, detail="Invalid token")
        user_id = int(sub)
    except (JWTError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    # role and overrides come from the user row, so changes apply without re-login
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User does not exist")

    return identity_for(user)


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> Identity:
    return identity_from_token(db, creds.credentials if creds is not None else None)
