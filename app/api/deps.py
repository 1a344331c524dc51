from fastapi import Request

from app.core.database import get_db  # noqa: F401
from app.realtime.dispatcher import FanoutDispatcher
from app.storage.files import FileStorage


def get_dispatcher(request: Request) -> FanoutDispatcher:
    return request.app.state.dispatcher


def get_storage(request: Request) -> FileStorage:
    return request.app.state.storage
