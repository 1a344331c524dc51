import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from app.api.deps import get_db, get_dispatcher
from app.core.auth import identity_from_token, security
from app.core.permissions import Identity
from app.realtime.dispatcher import CLOSE, FanoutDispatcher
from app.services.guards import get_group_or_404, require_member

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _channel_identity(
    group_id: int,
    token: str | None = Query(None),
    creds: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> Identity:
    # EventSource cannot send headers, so the token may also arrive as ?token=
    raw = creds.credentials if creds is not None else token
    identity = identity_from_token(db, raw)
    require_member(get_group_or_404(db, group_id), identity.user_id)
    return identity


@router.get("/groups/{group_id}/events")
async def group_events(
    group_id: int,
    identity: Identity = Depends(_channel_identity),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
):
    sub = dispatcher.subscribe(group_id, identity.user_id)

    async def generator():
        try:
            while True:
                msg = await sub.queue.get()
                if msg is CLOSE:
                    break
                yield {
                    "event": msg["event"],
                    "data": json.dumps(msg["data"], ensure_ascii=False),
                }
        except asyncio.CancelledError:
            pass
        finally:
            dispatcher.unsubscribe(sub)

    return EventSourceResponse(generator())
