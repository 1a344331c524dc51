"""
Message ledger and per-recipient read tracking.

A message's read status is seeded from the group's members at send time and
never grows afterwards: someone who joins later has no entry for older
messages, and marking one of them read is refused.
"""

import html
import logging
from datetime import datetime

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from app.core.database import casefold
from app.core.errors import BadRequest, Forbidden, NotFound
from app.core.locks import group_locks
from app.core.permissions import Identity
from app.core.timeutils import to_utc_naive, utc_now_naive
from app.models.group import Group
from app.models.message import Message, MessageReadStatus
from app.realtime.dispatcher import MESSAGE_CREATED, MESSAGE_DELETED, FanoutDispatcher
from app.schemas.message import MessagePublic, ReadStatusEntry, ReplyPreview
from app.services import audit
from app.services.guards import get_group_or_404, require_member
from app.services.tx import transaction
from app.services.users import user_ref, user_refs
from app.storage.files import FileStorage, StoredFile

logger = logging.getLogger(__name__)

FILE_CONTENT_PREFIX = "[file]"


def sanitize(text: str) -> str:
    return html.escape(text, quote=True)


def get_message_or_404(db: Session, message_id: int) -> Message:
    message = db.get(Message, message_id)
    if not message:
        raise NotFound(f"message {message_id} not found")
    return message


def _check_reply_target(db: Session, group_id: int, reply_to: int | None) -> None:
    if reply_to is None:
        return
    target = db.get(Message, reply_to)
    if target is None or target.group_id != group_id:
        raise BadRequest("reply_to must reference a message in the same group")


def _seed_read_status(group: Group, sender_id: int) -> list[MessageReadStatus]:
    now = utc_now_naive()
    return [
        MessageReadStatus(
            user_id=uid,
            read=uid == sender_id,
            read_at=now if uid == sender_id else None,
        )
        for uid in group.member_ids
    ]


def _post(db: Session, dispatcher: FanoutDispatcher, group: Group, batch: list[Message]) -> list[Message]:
    with transaction(db):
        db.add_all(batch)
    for message in batch:
        db.refresh(message)
    # publish only once the whole batch is committed
    for message in batch:
        dispatcher.publish(group.id, MESSAGE_CREATED, message_public(db, message).model_dump(mode="json"))
    return batch


def send_text(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    group_id: int,
    content: str,
    reply_to: int | None = None,
) -> Message:
    # the lock pins the membership snapshot the read status is seeded from
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_member(group, identity.user_id)
        _check_reply_target(db, group_id, reply_to)

        message = Message(
            sender_id=identity.user_id,
            group_id=group_id,
            content=sanitize(content),
            reply_to_id=reply_to,
            read_status=_seed_read_status(group, identity.user_id),
        )
        return _post(db, dispatcher, group, [message])[0]


def send_files(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    group_id: int,
    stored_files: list[StoredFile],
    reply_to: int | None = None,
) -> list[Message]:
    """One message per stored file, committed together or not at all."""
    if not stored_files:
        raise BadRequest("no files uploaded")

    # file metadata is stored raw; escaping it is the renderer's job
    with group_locks.hold(group_id):
        group = get_group_or_404(db, group_id)
        require_member(group, identity.user_id)
        _check_reply_target(db, group_id, reply_to)

        batch = [
            Message(
                sender_id=identity.user_id,
                group_id=group_id,
                content=f"{FILE_CONTENT_PREFIX} {stored.original_name}",
                file_url=stored.locator,
                file_name=stored.original_name,
                file_size=stored.size,
                file_type=stored.mime_type,
                reply_to_id=reply_to,
                read_status=_seed_read_status(group, identity.user_id),
            )
            for stored in stored_files
        ]
        return _post(db, dispatcher, group, batch)


def send_file(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    group_id: int,
    stored: StoredFile,
    reply_to: int | None = None,
) -> Message:
    return send_files(db, dispatcher, identity, group_id, [stored], reply_to)[0]


def list_messages(db: Session, identity: Identity, group_id: int) -> list[Message]:
    group = get_group_or_404(db, group_id)
    require_member(group, identity.user_id)
    return list(
        db.execute(
            select(Message)
            .where(Message.group_id == group_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        ).scalars().all()
    )


def mark_read(db: Session, identity: Identity, message_id: int) -> Message:
    message = get_message_or_404(db, message_id)

    # single-row conditional update: concurrent readers of one message never clash
    with transaction(db):
        result = db.execute(
            update(MessageReadStatus)
            .where(
                MessageReadStatus.message_id == message_id,
                MessageReadStatus.user_id == identity.user_id,
                MessageReadStatus.read.is_(False),
            )
            .values(read=True, read_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            entry = db.execute(
                select(MessageReadStatus.id).where(
                    MessageReadStatus.message_id == message_id,
                    MessageReadStatus.user_id == identity.user_id,
                )
            ).first()
            if entry is None:
                raise Forbidden("you were not a member of this group when the message was sent")

    db.refresh(message)
    return message


def mark_all_read(db: Session, identity: Identity, group_id: int) -> int:
    group = get_group_or_404(db, group_id)
    require_member(group, identity.user_id)

    with transaction(db):
        result = db.execute(
            update(MessageReadStatus)
            .where(
                MessageReadStatus.user_id == identity.user_id,
                MessageReadStatus.read.is_(False),
                MessageReadStatus.message_id.in_(
                    select(Message.id).where(Message.group_id == group_id)
                ),
            )
            .values(read=True, read_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
    return result.rowcount


def search(
    db: Session,
    identity: Identity,
    group_id: int,
    keyword: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Message]:
    group = get_group_or_404(db, group_id)
    require_member(group, identity.user_id)

    start = to_utc_naive(start) if start else None
    end = to_utc_naive(end) if end else None
    if start and end and start > end:
        raise BadRequest("start must not be after end")

    stmt = select(Message).where(Message.group_id == group_id)
    if keyword:
        folded = casefold(Message.content)
        # text content is stored escaped, file captions raw
        stmt = stmt.where(
            or_(
                and_(
                    Message.file_url.is_(None),
                    folded.contains(sanitize(keyword).casefold(), autoescape=True),
                ),
                and_(
                    Message.file_url.is_not(None),
                    folded.contains(keyword.casefold(), autoescape=True),
                ),
            )
        )
    if start:
        stmt = stmt.where(Message.created_at >= start)
    if end:
        stmt = stmt.where(Message.created_at <= end)

    return list(db.execute(stmt.order_by(Message.created_at.asc(), Message.id.asc())).scalars().all())


def delete_message(
    db: Session,
    dispatcher: FanoutDispatcher,
    identity: Identity,
    message_id: int,
    storage: FileStorage | None = None,
) -> None:
    message = get_message_or_404(db, message_id)
    group_id = message.group_id
    group = get_group_or_404(db, group_id)

    if message.sender_id != identity.user_id and not group.is_manager(identity.user_id):
        raise Forbidden("only the sender, the group owner or an admin can delete this message")

    locator = message.file_url
    sender_id = message.sender_id
    with transaction(db):
        db.delete(message)

    dispatcher.publish(group_id, MESSAGE_DELETED, {"id": message_id, "group_id": group_id})
    if locator and storage is not None:
        storage.delete(locator)

    if sender_id != identity.user_id:
        audit.record(db, "message.delete", identity.user_id, group_id, message_id=message_id, sender_id=sender_id)


def _reply_preview(db: Session, reply_to_id: int | None) -> ReplyPreview | None:
    if reply_to_id is None:
        return None
    target = db.get(Message, reply_to_id)
    if target is None:
        return ReplyPreview(id=reply_to_id, unavailable=True)
    return ReplyPreview(
        id=target.id,
        sender=user_ref(db, target.sender_id),
        content=target.content,
        file_name=target.file_name,
    )


def message_public(db: Session, message: Message, refs=None) -> MessagePublic:
    refs = refs if refs is not None else user_refs(db, [message.sender_id])
    return MessagePublic(
        id=message.id,
        group_id=message.group_id,
        sender=refs.get(message.sender_id) or user_ref(db, message.sender_id),
        content=message.content,
        file_url=message.file_url,
        file_name=message.file_name,
        file_size=message.file_size,
        file_type=message.file_type,
        reply_to=_reply_preview(db, message.reply_to_id),
        read_status=[
            ReadStatusEntry(user_id=s.user_id, read=s.read, read_at=s.read_at)
            for s in message.read_status
        ],
        created_at=message.created_at,
    )


def messages_public(db: Session, messages: list[Message]) -> list[MessagePublic]:
    refs = user_refs(db, [m.sender_id for m in messages])
    return [message_public(db, m, refs) for m in messages]
