from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.auth import get_current_user
from app.core.permissions import (
    ALL_PERMISSIONS,
    ALL_ROLES,
    DEFAULT_PERMISSIONS,
    ROLE_ADMIN,
    ROLE_RANK,
    Identity,
    require,
)
from app.schemas.auth import AccessUpdate
from app.schemas.user import UserAccess
from app.services import users

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("/roles")
def list_roles(current_user: Identity = Depends(get_current_user)):
    return [
        {
            "role": role,
            "rank": ROLE_RANK[role],
            "permissions": sorted(DEFAULT_PERMISSIONS[role]),
        }
        for role in ALL_ROLES
    ]


@router.get("/available")
def list_available(current_user: Identity = Depends(get_current_user)):
    return {"permissions": list(ALL_PERMISSIONS)}


@router.get("/user/{user_id}", response_model=UserAccess)
def get_user_access(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    require(current_user, ROLE_ADMIN)
    return users.get_user_or_404(db, user_id)


@router.put("/user/{user_id}", response_model=UserAccess)
def update_user_access(
    user_id: int,
    payload: AccessUpdate,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return users.update_access(db, current_user, user_id, payload.role, payload.permissions)
