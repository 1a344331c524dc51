import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_dispatcher, get_storage
from app.core.auth import get_current_user
from app.core.permissions import Identity
from app.realtime.dispatcher import FanoutDispatcher
from app.schemas.message import MarkAllReadResult, MessageCreate, MessagePublic
from app.services import messages
from app.storage.files import FileStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


def _send_uploads(
    db: Session,
    dispatcher: FanoutDispatcher,
    storage: FileStorage,
    identity: Identity,
    group_id: int,
    uploads: list[UploadFile],
    reply_to: int | None,
):
    stored = []
    try:
        for upload in uploads:
            stored.append(storage.store(upload))
        return messages.send_files(db, dispatcher, identity, group_id, stored, reply_to)
    except Exception:
        # nothing of a failed batch is kept, including files already written
        logger.info("Discarding %d stored file(s) after failed send to group %s", len(stored), group_id)
        for item in stored:
            storage.delete(item.locator)
        raise


@router.get("/{group_id}", response_model=list[MessagePublic])
def list_messages(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return messages.messages_public(db, messages.list_messages(db, current_user, group_id))


@router.post("/{group_id}", response_model=MessagePublic)
def send_message(
    group_id: int,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
):
    message = messages.send_text(db, dispatcher, current_user, group_id, payload.content, payload.reply_to)
    return messages.message_public(db, message)


@router.post("/{group_id}/upload", response_model=MessagePublic)
def upload_file(
    group_id: int,
    file: UploadFile = File(...),
    reply_to: int | None = Form(None),
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
    storage: FileStorage = Depends(get_storage),
):
    sent = _send_uploads(db, dispatcher, storage, current_user, group_id, [file], reply_to)
    return messages.message_public(db, sent[0])


@router.post("/{group_id}/uploads", response_model=list[MessagePublic])
def upload_files(
    group_id: int,
    files: list[UploadFile] = File(...),
    reply_to: int | None = Form(None),
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
    storage: FileStorage = Depends(get_storage),
):
    sent = _send_uploads(db, dispatcher, storage, current_user, group_id, files, reply_to)
    return messages.messages_public(db, sent)


@router.delete("/{message_id}")
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
    storage: FileStorage = Depends(get_storage),
):
    messages.delete_message(db, dispatcher, current_user, message_id, storage=storage)
    return {"ok": True, "deleted_message_id": message_id}


@router.put("/{message_id}/read", response_model=MessagePublic)
def mark_read(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return messages.message_public(db, messages.mark_read(db, current_user, message_id))


@router.put("/{group_id}/read-all", response_model=MarkAllReadResult)
def mark_all_read(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    updated = messages.mark_all_read(db, current_user, group_id)
    return MarkAllReadResult(group_id=group_id, updated=updated)


@router.get("/{group_id}/search", response_model=list[MessagePublic])
def search_messages(
    group_id: int,
    keyword: str | None = Query(None, max_length=200),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    found = messages.search(db, current_user, group_id, keyword, start, end)
    return messages.messages_public(db, found)
