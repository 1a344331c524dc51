import pytest

from app.core.errors import BadRequest, Conflict, Forbidden, NotFound
from app.models.announcement import (
    INVITATION_ACCEPTED,
    INVITATION_REJECTED,
    STATUS_READ,
    STATUS_RESPONDED,
    STATUS_UNREAD,
)
from app.models.group_request import REQUEST_PENDING
from app.services import announcements, blacklist, membership, requests


class TestSystemAnnouncements:
    def test_owner_broadcasts_to_everyone(self, db, owner, make_user):
        u1, u2 = make_user(), make_user()
        a = announcements.create_announcement(db, owner, "maintenance tonight")

        for user in (u1, u2, owner):
            listed = announcements.list_for_user(db, user)
            assert [(x.id, status) for x, status in listed] == [(a.id, STATUS_UNREAD)]

    def test_only_owner_broadcasts(self, db, make_user):
        with pytest.raises(Forbidden):
            announcements.create_announcement(db, make_user(role="admin"), "hi")

    def test_read_status_is_per_recipient(self, db, owner, make_user):
        u1, u2 = make_user(), make_user()
        a = announcements.create_announcement(db, owner, "news")

        announcements.mark_read(db, u1, a.id)

        assert announcements.list_for_user(db, u1)[0][1] == STATUS_READ
        assert announcements.list_for_user(db, u2)[0][1] == STATUS_UNREAD

    def test_mark_read_requires_recipient(self, db, owner, make_user):
        a = announcements.create_announcement(db, owner, "news")
        with pytest.raises(Forbidden):
            announcements.mark_read(db, make_user(), a.id)
        with pytest.raises(NotFound):
            announcements.mark_read(db, owner, 777)


class TestInvitations:
    @pytest.fixture
    def setup(self, db, make_user):
        u1, u2 = make_user("U1"), make_user("U2")
        group = membership.create_group(db, u1, "Eng")
        invitation = announcements.create_invitation(db, u1, group.id, u2.user_id)
        return group, u1, u2, invitation

    def test_invitation_addressed_to_recipient(self, db, setup):
        group, u1, u2, invitation = setup
        assert invitation.content == "You are invited to join Eng"
        assert invitation.group_name == "Eng"
        assert [a.id for a, _ in announcements.list_for_user(db, u2)] == [invitation.id]
        assert announcements.list_for_user(db, u1) == []

    def test_accept_opens_pending_request(self, db, setup):
        group, u1, u2, invitation = setup

        invitation, req = announcements.respond(db, u2, invitation.id, accept=True)

        assert invitation.invitation_status == INVITATION_ACCEPTED
        assert invitation.recipient(u2.user_id).status == STATUS_RESPONDED
        assert req.status == REQUEST_PENDING
        assert [r.id for r in requests.list_requests(db, u1, group.id)] == [req.id]
        # answered invitations drop out of the inbox
        assert announcements.list_for_user(db, u2) == []

    def test_accept_reuses_existing_pending_request(self, db, setup):
        group, _, u2, invitation = setup
        existing = requests.create_request(db, u2, group.id)

        _, req = announcements.respond(db, u2, invitation.id, accept=True)
        assert req.id == existing.id

    def test_reject_is_terminal(self, db, setup):
        _, _, u2, invitation = setup

        invitation, req = announcements.respond(db, u2, invitation.id, accept=False)
        assert req is None
        assert invitation.invitation_status == INVITATION_REJECTED

        with pytest.raises(Conflict):
            announcements.respond(db, u2, invitation.id, accept=True)

    def test_only_recipient_responds(self, db, setup):
        _, u1, _, invitation = setup
        with pytest.raises(Forbidden):
            announcements.respond(db, u1, invitation.id, accept=True)

    def test_banned_recipient_cannot_accept(self, db, dispatcher, setup):
        group, u1, u2, invitation = setup
        blacklist.ban(db, dispatcher, u1, group.id, u2.user_id)

        with pytest.raises(Forbidden):
            announcements.respond(db, u2, invitation.id, accept=True)
        db.refresh(invitation)
        assert invitation.recipient(u2.user_id).status == STATUS_UNREAD

    def test_accept_after_group_dissolved(self, db, dispatcher, setup):
        group, u1, u2, invitation = setup
        membership.dissolve(db, dispatcher, u1, group.id)

        with pytest.raises(NotFound):
            announcements.respond(db, u2, invitation.id, accept=True)

    def test_plain_announcement_is_not_answerable(self, db, owner, make_user):
        u = make_user()
        a = announcements.create_announcement(db, owner, "news")
        with pytest.raises(BadRequest):
            announcements.respond(db, u, a.id, accept=True)

    def test_invite_guards(self, db, make_user, setup):
        group, u1, u2, _ = setup
        with pytest.raises(Forbidden):
            announcements.create_invitation(db, u2, group.id, make_user().user_id)
        with pytest.raises(Conflict):
            announcements.create_invitation(db, u1, group.id, u1.user_id)
        with pytest.raises(NotFound):
            announcements.create_invitation(db, u1, group.id, 5555)
