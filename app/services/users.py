import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.database import casefold
from app.core.errors import BadRequest, Conflict, Forbidden, NotFound
from app.core.locks import group_locks
from app.core.permissions import ALL_PERMISSIONS, ALL_ROLES, ROLE_ADMIN, ROLE_OWNER, ROLE_USER, Identity, require
from app.core.security import hash_password, verify_password
from app.models.user import User
from app.schemas.user import UserRef
from app.services import audit
from app.services.tx import transaction

logger = logging.getLogger(__name__)

OWNER_BOOTSTRAP = "owner-bootstrap"
SEARCH_LIMIT = 50


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound(f"user {user_id} not found")
    return user


def user_refs(db: Session, ids) -> dict[int, UserRef]:
    ids = set(ids)
    if not ids:
        return {}
    rows = db.execute(select(User.id, User.username).where(User.id.in_(ids))).all()
    return {r.id: UserRef(id=r.id, username=r.username) for r in rows}


def user_ref(db: Session, user_id: int) -> UserRef:
    # users are never deleted by this service, but keep a fallback for foreign ids
    return user_refs(db, [user_id]).get(user_id) or UserRef(id=user_id, username=None)


def get_by_username(db: Session, username: str) -> User:
    user = db.execute(select(User).where(User.username == username.strip())).scalar_one_or_none()
    if not user:
        raise NotFound(f"user {username!r} not found")
    return user


def list_users(db: Session, identity: Identity) -> list[User]:
    require(identity, ROLE_ADMIN)
    return list(db.execute(select(User).order_by(User.id)).scalars())


def search_users(db: Session, query: str, limit: int = SEARCH_LIMIT) -> list[User]:
    """Case-insensitive substring match on usernames, capped at `limit` rows."""
    query = query.strip()
    if not query:
        raise BadRequest("search query must not be blank")
    stmt = (
        select(User)
        .where(casefold(User.username).contains(query.casefold(), autoescape=True))
        .order_by(User.username)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def register(db: Session, username: str, password: str) -> User:
    username = username.strip()
    if not username:
        raise BadRequest("username must not be blank")
    if db.execute(select(User).where(User.username == username)).scalar_one_or_none():
        raise Conflict("username already registered")

    try:
        hashed = hash_password(password)
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc

    # the first account on a fresh install becomes the single system owner;
    # count and insert run as one step so two registrations cannot both claim it
    with group_locks.hold(OWNER_BOOTSTRAP):
        owners = db.execute(select(func.count()).select_from(User).where(User.role == ROLE_OWNER)).scalar_one()
        role = ROLE_OWNER if owners == 0 else ROLE_USER

        user = User(username=username, hashed_password=hashed, role=role, permissions=[])
        with transaction(db, conflict="username already registered or owner already claimed"):
            db.add(user)
    db.refresh(user)
    logger.info("Registered user %s (%s) as %s", user.id, user.username, user.role)
    return user


def authenticate(db: Session, username: str, password: str) -> User | None:
    user = db.execute(select(User).where(User.username == username.strip())).scalar_one_or_none()
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def update_access(
    db: Session,
    identity: Identity,
    user_id: int,
    role: str | None = None,
    permissions: list[str] | None = None,
) -> User:
    require(identity, "admin")
    target = get_user_or_404(db, user_id)

    if role is not None and role not in ALL_ROLES:
        raise BadRequest(f"unknown role: {role}")
    if permissions is not None:
        unknown = sorted(set(permissions) - set(ALL_PERMISSIONS))
        if unknown:
            raise BadRequest(f"unknown permissions: {', '.join(unknown)}")

    if target.role == ROLE_OWNER and not identity.is_system_owner:
        raise Forbidden("only the owner can change the owner's access")
    if role == ROLE_OWNER and target.role != ROLE_OWNER:
        if not identity.is_system_owner:
            raise Forbidden("only the owner can grant the owner role")
        raise Conflict("an owner already exists")

    with transaction(db):
        if role is not None:
            target.role = role
        if permissions is not None:
            target.permissions = sorted(set(permissions))

    audit.record(
        db,
        "user.access_changed",
        identity.user_id,
        target_user_id=target.id,
        role=target.role,
        permissions=list(target.permissions),
    )
    return target
