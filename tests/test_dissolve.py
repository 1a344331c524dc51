import pytest
from sqlalchemy import func, select

from app.core.errors import Forbidden, NotFound
from app.models.announcement import Announcement
from app.models.blacklist import BlacklistEntry
from app.models.group_request import GroupRequest
from app.models.membership import GroupAdmin, GroupMember
from app.models.message import Message, MessageReadStatus
from app.realtime.dispatcher import GROUP_DISSOLVED
from app.services import announcements, blacklist, membership, messages, requests
from app.storage.files import StoredFile


def _count(db, model, **where):
    stmt = select(func.count()).select_from(model)
    for column, value in where.items():
        stmt = stmt.where(getattr(model, column) == value)
    return db.execute(stmt).scalar_one()


class TestDissolve:
    def test_cascade(self, db, dispatcher, storage, make_user):
        u1, u2, u3, u4, u5 = (make_user() for _ in range(5))
        group = membership.create_group(db, u1, "Eng")
        keep = membership.create_group(db, u1, "Ops")
        messages.send_text(db, dispatcher, u1, keep.id, "unrelated")

        requests.approve_request(db, dispatcher, u1, group.id, requests.create_request(db, u2, group.id).id)
        (storage.root / "file-a.txt").write_text("a")
        messages.send_file(db, dispatcher, u2, group.id, StoredFile("/uploads/file-a.txt", "a.txt", 1, "text/plain"))
        for i in range(4):
            messages.send_text(db, dispatcher, u1, group.id, f"m{i}")
        requests.create_request(db, u3, group.id)
        requests.create_request(db, u4, group.id)
        blacklist.ban(db, dispatcher, u1, group.id, u5.user_id)
        invitation = announcements.create_invitation(db, u1, group.id, u5.user_id)
        group_id = group.id

        assert _count(db, Message, group_id=group_id) == 5
        assert _count(db, GroupRequest, group_id=group_id, status="pending") == 2
        assert _count(db, BlacklistEntry, group_id=group_id) == 1

        membership.dissolve(db, dispatcher, u1, group_id, storage=storage)

        with pytest.raises(NotFound):
            membership.get_group(db, u1, group_id)
        assert _count(db, Message, group_id=group_id) == 0
        assert _count(db, GroupRequest, group_id=group_id) == 0
        assert _count(db, BlacklistEntry, group_id=group_id) == 0
        assert _count(db, GroupMember, group_id=group_id) == 0
        assert _count(db, GroupAdmin, group_id=group_id) == 0
        assert _count(db, MessageReadStatus) == 1  # the Ops message only
        assert not (storage.root / "file-a.txt").exists()

        db.refresh(invitation)
        assert invitation.group_id is None
        assert invitation.group_name == "Eng"
        assert _count(db, Announcement) == 1

        assert _count(db, Message, group_id=keep.id) == 1
        assert dispatcher.events[-1] == (group_id, GROUP_DISSOLVED, {"group_id": group_id, "name": "Eng"})
        assert (group_id, None) in dispatcher.revoked

    def test_only_owner_dissolves(self, db, dispatcher, owner, make_user):
        u1, u2 = make_user(), make_user()
        group = membership.create_group(db, u1, "Eng")
        requests.approve_request(db, dispatcher, u1, group.id, requests.create_request(db, u2, group.id).id)
        membership.promote_admin(db, u1, group.id, u2.user_id)

        with pytest.raises(Forbidden):
            membership.dissolve(db, dispatcher, u2, group.id)

        # the system owner may dissolve any group
        membership.dissolve(db, dispatcher, owner, group.id)
        with pytest.raises(NotFound):
            membership.get_group(db, owner, group.id)

    def test_failure_rolls_back_everything(self, db, dispatcher, make_user, monkeypatch):
        u1 = make_user()
        group = membership.create_group(db, u1, "Eng")
        messages.send_text(db, dispatcher, u1, group.id, "keep me")

        def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(db, "delete", boom)
        with pytest.raises(RuntimeError):
            membership.dissolve(db, dispatcher, u1, group.id)
        monkeypatch.undo()

        assert membership.get_group(db, u1, group.id).id == group.id
        assert _count(db, Message, group_id=group.id) == 1
        assert GROUP_DISSOLVED not in dispatcher.kinds()
