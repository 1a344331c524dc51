from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.auth import get_current_user
from app.core.permissions import Identity
from app.core.security import create_access_token
from app.schemas.auth import LoginRequest, RegisterRequest, TokenResponse
from app.schemas.user import UserAccess, UserRef
from app.services import users

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    user = users.register(db, payload.username, payload.password)
    token = create_access_token(str(user.id), user.role)
    return TokenResponse(access_token=token)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = users.authenticate(db, payload.username, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_access_token(str(user.id), user.role)
    return TokenResponse(access_token=token)


@router.get("/me", response_model=UserAccess)
def me(
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return users.get_user_or_404(db, current_user.user_id)


@router.get("/users", response_model=list[UserAccess])
def list_users(
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return users.list_users(db, current_user)


@router.get("/users/search", response_model=list[UserRef])
def search_users(
    q: str = Query(..., min_length=1, max_length=60),
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return [UserRef(id=u.id, username=u.username) for u in users.search_users(db, q)]


@router.get("/user/{username}", response_model=UserRef)
def get_user(
    username: str,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    user = users.get_by_username(db, username)
    return UserRef(id=user.id, username=user.username)
