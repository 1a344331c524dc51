from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.auth import get_current_user
from app.core.permissions import Identity
from app.models.announcement import STATUS_UNREAD
from app.schemas.announcement import (
    AnnouncementCreate,
    AnnouncementPublic,
    InvitationCreate,
    InvitationResponse,
    InvitationResult,
)
from app.services import announcements
from app.services.requests import request_public

router = APIRouter(prefix="/announcements", tags=["announcements"])


@router.get("", response_model=list[AnnouncementPublic])
def list_announcements(
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    return [
        announcements.announcement_public(db, a, status)
        for a, status in announcements.list_for_user(db, current_user)
    ]


@router.post("", response_model=AnnouncementPublic)
def create_announcement(
    payload: AnnouncementCreate,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    announcement = announcements.create_announcement(db, current_user, payload.content)
    return announcements.announcement_public(db, announcement, STATUS_UNREAD)


@router.post("/invitations", response_model=AnnouncementPublic)
def create_invitation(
    payload: InvitationCreate,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    invitation = announcements.create_invitation(db, current_user, payload.group_id, payload.recipient_id)
    return announcements.announcement_public(db, invitation, STATUS_UNREAD)


@router.post("/{announcement_id}/response", response_model=InvitationResult)
def respond_to_invitation(
    announcement_id: int,
    payload: InvitationResponse,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    invitation, request = announcements.respond(db, current_user, announcement_id, payload.accept)
    recipient = invitation.recipient(current_user.user_id)
    return InvitationResult(
        invitation=announcements.announcement_public(db, invitation, recipient.status),
        request=request_public(db, request) if request is not None else None,
    )


@router.put("/{announcement_id}/read", response_model=AnnouncementPublic)
def mark_announcement_read(
    announcement_id: int,
    db: Session = Depends(get_db),
    current_user: Identity = Depends(get_current_user),
):
    announcement = announcements.mark_read(db, current_user, announcement_id)
    recipient = announcement.recipient(current_user.user_id)
    return announcements.announcement_public(db, announcement, recipient.status)
