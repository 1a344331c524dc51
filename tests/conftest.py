"""
Shared fixtures: a throwaway in-memory database per test, a dispatcher that
records what would have been pushed to live sessions, and a TestClient wired
to both.
"""

import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_db
from app.core.auth import identity_for
from app.core.database import Base
from app.core.permissions import ROLE_OWNER, ROLE_USER
from app.core.security import create_access_token
from app.main import create_app
from app.models.user import User
from app.realtime.dispatcher import EVENT_KINDS, FanoutDispatcher, Subscription
from app.storage.files import LocalFileStorage


class RecordingDispatcher(FanoutDispatcher):
    def __init__(self):
        self.events = []
        self.revoked = []
        self._ready = False

    def init(self, loop):
        self._ready = True

    @property
    def ready(self):
        return self._ready

    def subscribe(self, group_id, user_id):
        raise NotImplementedError("live streams are covered by the SSE dispatcher tests")

    def unsubscribe(self, subscription: Subscription):
        pass

    def publish(self, group_id, kind, payload):
        assert kind in EVENT_KINDS
        self.events.append((group_id, kind, payload))

    def revoke(self, group_id, user_id=None):
        self.revoked.append((group_id, user_id))

    def kinds(self, group_id=None):
        return [k for g, k, _ in self.events if group_id is None or g == group_id]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory on a SQLite file, so each thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(str(tmp_path / "uploads"), max_bytes=1024)


@pytest.fixture
def make_user(db):
    """Insert a user directly and return its Identity; skips bcrypt for speed."""
    counter = itertools.count(1)

    def _make(username=None, role=ROLE_USER, permissions=()):
        user = User(
            username=username or f"user{next(counter)}",
            hashed_password="not-a-real-hash",
            role=role,
            permissions=list(permissions),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return identity_for(user)

    return _make


@pytest.fixture
def owner(make_user):
    return make_user("root", role=ROLE_OWNER)


@pytest.fixture
def client(engine, session_factory, dispatcher, storage):
    app = create_app(engine=engine, dispatcher=dispatcher, storage=storage)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    def _headers(identity):
        return {"Authorization": f"Bearer {create_access_token(str(identity.user_id), identity.role)}"}

    return _headers
