from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.timeutils import utc_now_naive

TYPE_ANNOUNCEMENT = "announcement"
TYPE_INVITATION = "invitation"

STATUS_UNREAD = "unread"
STATUS_READ = "read"
STATUS_RESPONDED = "responded"

INVITATION_PENDING = "pending"
INVITATION_ACCEPTED = "accepted"
INVITATION_REJECTED = "rejected"


class AnnouncementRecipient(Base):
    __tablename__ = "announcement_recipients"
    __table_args__ = (
        UniqueConstraint("announcement_id", "user_id", name="uq_announcement_recipient"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    announcement_id: Mapped[int] = mapped_column(
        ForeignKey("announcements.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    # per-recipient, so one reader does not mark a broadcast read for everyone
    status: Mapped[str] = mapped_column(String(20), default=STATUS_UNREAD, nullable=False)


class Announcement(Base):
    __tablename__ = "announcements"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, nullable=False)

    # invitation only; group_id is cleared when the group is dissolved, group_name is a snapshot
    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="SET NULL"), nullable=True, index=True
    )
    group_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    invitation_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    recipients: Mapped[list[AnnouncementRecipient]] = relationship(
        order_by=AnnouncementRecipient.id,
        cascade="all, delete-orphan",
    )

    def recipient(self, user_id: int) -> AnnouncementRecipient | None:
        return next((r for r in self.recipients if r.user_id == user_id), None)
