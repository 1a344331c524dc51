from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.timeutils import utc_now_naive
from app.models.membership import GroupAdmin, GroupMember


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, nullable=False)

    members: Mapped[list[GroupMember]] = relationship(
        order_by=GroupMember.id,
        cascade="all, delete-orphan",
    )
    admins: Mapped[list[GroupAdmin]] = relationship(
        order_by=GroupAdmin.id,
        cascade="all, delete-orphan",
    )

    @property
    def member_ids(self) -> list[int]:
        return [m.user_id for m in self.members]

    @property
    def admin_ids(self) -> list[int]:
        return [a.user_id for a in self.admins]

    def is_member(self, user_id: int) -> bool:
        return any(m.user_id == user_id for m in self.members)

    def is_admin(self, user_id: int) -> bool:
        return any(a.user_id == user_id for a in self.admins)

    def is_manager(self, user_id: int) -> bool:
        """Owner or group admin."""
        return self.owner_id == user_id or self.is_admin(user_id)
