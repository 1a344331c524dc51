import pytest
from sqlalchemy import select

from app.core.errors import BadRequest, Conflict, Forbidden, NotFound
from app.models.group_request import REQUEST_APPROVED, REQUEST_PENDING, REQUEST_REJECTED, GroupRequest
from app.services import blacklist, membership, requests


def _pending(db, group_id, user_id):
    return db.execute(
        select(GroupRequest).where(
            GroupRequest.group_id == group_id,
            GroupRequest.user_id == user_id,
            GroupRequest.status == REQUEST_PENDING,
        )
    ).scalars().all()


class TestJoinRequestLifecycle:
    def test_eng_approval_scenario(self, db, dispatcher, make_user):
        u1, u2 = make_user("U1"), make_user("U2")
        group = membership.create_group(db, u1, "Eng")
        assert group.owner_id == u1.user_id
        assert u1.user_id in group.admin_ids
        assert u1.user_id in group.member_ids

        req = requests.create_request(db, u2, group.id)
        assert req.status == REQUEST_PENDING

        req = requests.approve_request(db, dispatcher, u1, group.id, req.id)
        assert req.status == REQUEST_APPROVED
        db.refresh(group)
        assert u2.user_id in group.member_ids

        with pytest.raises(Conflict):
            requests.approve_request(db, dispatcher, u1, group.id, req.id)

    def test_reject_is_terminal(self, db, dispatcher, make_user):
        u1, u2 = make_user(), make_user()
        group = membership.create_group(db, u1, "Eng")
        req = requests.create_request(db, u2, group.id)

        req = requests.reject_request(db, u1, group.id, req.id)
        assert req.status == REQUEST_REJECTED
        with pytest.raises(Conflict):
            requests.approve_request(db, dispatcher, u1, group.id, req.id)

        # a fresh request is allowed once the old one is resolved
        again = requests.create_request(db, u2, group.id)
        assert again.id != req.id

    def test_at_most_one_pending(self, db, make_user):
        u1, u2 = make_user(), make_user()
        group = membership.create_group(db, u1, "Eng")
        requests.create_request(db, u2, group.id)

        with pytest.raises(Conflict):
            requests.create_request(db, u2, group.id)
        assert len(_pending(db, group.id, u2.user_id)) == 1

    def test_member_cannot_request(self, db, make_user):
        u1 = make_user()
        group = membership.create_group(db, u1, "Eng")
        with pytest.raises(Conflict):
            requests.create_request(db, u1, group.id)

    def test_missing_group(self, db, make_user):
        with pytest.raises(NotFound):
            requests.create_request(db, make_user(), 404)


class TestResolutionGuards:
    def test_plain_member_cannot_resolve(self, db, dispatcher, make_user):
        u1, u2, u3 = make_user(), make_user(), make_user()
        group = membership.create_group(db, u1, "Eng")
        req = requests.approve_request(
            db, dispatcher, u1, group.id, requests.create_request(db, u2, group.id).id
        )
        pending = requests.create_request(db, u3, group.id)

        with pytest.raises(Forbidden):
            requests.approve_request(db, dispatcher, u2, group.id, pending.id)
        with pytest.raises(Forbidden):
            requests.list_requests(db, u2, group.id)
        assert req.status == REQUEST_APPROVED

    def test_request_from_other_group(self, db, dispatcher, make_user):
        u1, u2 = make_user(), make_user()
        eng = membership.create_group(db, u1, "Eng")
        ops = membership.create_group(db, u1, "Ops")
        req = requests.create_request(db, u2, ops.id)

        with pytest.raises(BadRequest):
            requests.approve_request(db, dispatcher, u1, eng.id, req.id)

    def test_unknown_request(self, db, dispatcher, make_user):
        u1 = make_user()
        group = membership.create_group(db, u1, "Eng")
        with pytest.raises(NotFound):
            requests.approve_request(db, dispatcher, u1, group.id, 12345)

    def test_ban_after_request_blocks_approval(self, db, dispatcher, make_user):
        u1, u2 = make_user(), make_user()
        group = membership.create_group(db, u1, "Eng")
        req = requests.create_request(db, u2, group.id)
        blacklist.ban(db, dispatcher, u1, group.id, u2.user_id)

        with pytest.raises(Forbidden):
            requests.approve_request(db, dispatcher, u1, group.id, req.id)
        db.refresh(req)
        assert req.status == REQUEST_PENDING

    def test_list_pending_in_order(self, db, make_user):
        u1, u2, u3 = make_user(), make_user(), make_user()
        group = membership.create_group(db, u1, "Eng")
        r2 = requests.create_request(db, u2, group.id)
        r3 = requests.create_request(db, u3, group.id)

        assert [r.id for r in requests.list_requests(db, u1, group.id)] == [r2.id, r3.id]
