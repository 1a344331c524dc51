import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.core.config import settings
from app.core.database import Base, engine as default_engine
from app.core.errors import register_error_handlers
from app.models.user import User  # noqa: F401
from app.models.group import Group  # noqa: F401
from app.models.membership import GroupAdmin, GroupMember  # noqa: F401
from app.models.group_request import GroupRequest  # noqa: F401
from app.models.blacklist import BlacklistEntry  # noqa: F401
from app.models.announcement import Announcement, AnnouncementRecipient  # noqa: F401
from app.models.message import Message, MessageReadStatus  # noqa: F401
from app.models.action_log import ActionLog  # noqa: F401

from app.api.routes.auth import router as auth_router
from app.api.routes.groups import router as groups_router
from app.api.routes.blacklist import router as blacklist_router
from app.api.routes.announcements import router as announcements_router
from app.api.routes.messages import router as messages_router
from app.api.routes.logs import router as logs_router
from app.api.routes.permissions import router as permissions_router
from app.realtime.dispatcher import FanoutDispatcher, SseDispatcher
from app.realtime.sse import router as sse_router
from app.storage.files import FileStorage, LocalFileStorage

logger = logging.getLogger(__name__)


def create_app(
    engine=None,
    dispatcher: FanoutDispatcher | None = None,
    storage: FileStorage | None = None,
) -> FastAPI:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = engine or default_engine
    dispatcher = dispatcher or SseDispatcher(queue_size=settings.SSE_QUEUE_SIZE)
    storage = storage or LocalFileStorage(settings.UPLOAD_DIR, max_bytes=settings.MAX_UPLOAD_BYTES)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        # events are published from worker threads onto this loop
        dispatcher.init(asyncio.get_running_loop())
        logger.info("Group chat API started (dev=%s)", settings.DEV)
        yield
        logger.info("Group chat API stopping")

    app = FastAPI(title="Group Chat API", version="0.1.0", lifespan=lifespan)
    app.state.dispatcher = dispatcher
    app.state.storage = storage

    # CORS first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=False,
    )

    register_error_handlers(app)

    app.include_router(auth_router)
    app.include_router(groups_router)
    app.include_router(blacklist_router)
    app.include_router(announcements_router)
    app.include_router(messages_router)
    app.include_router(logs_router)
    app.include_router(permissions_router)
    app.include_router(sse_router)

    if isinstance(storage, LocalFileStorage):
        app.mount("/uploads", StaticFiles(directory=str(storage.root)), name="uploads")

    @app.get("/")
    def root():
        return {"status": "ok", "message": "Group chat API running"}

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()
