"""
Unit tests: organizer-approved join requests.

Validates:
- RequestJoin: new request, pending invitation / active member / pending request rejected
- Terminal requests (accepted, declined, cancelled) reopen to pending
- Accept: wrong event, already processed, creates / activates / reuses membership
- Decline and requester cancel
- Listings for organizers and requesters
"""

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.dml import Insert, Update

from services.tripcrew.errors import AlreadyMember, AlreadyPending, AlreadyProcessed, NotFound
from services.tripcrew.membership.engine import MembershipEngine
from services.tripcrew.membership.qr import DATA_URL_PREFIX
from services.tripcrew.tests.helpers.factories import (
    make_event,
    make_join_request,
    make_member,
    make_obj,
    make_user,
)

pytestmark = pytest.mark.asyncio


def _params(stmt) -> dict:
    return stmt.compile(dialect=postgresql.dialect()).params


@pytest.fixture
def engine(mock_session, directory):
    return MembershipEngine(mock_session.mock, directory)


@pytest.fixture
def event():
    return make_obj(make_event(id=1))


class TestRequestJoin:
    async def test_creates_pending_request(self, engine, mock_session, event):
        mock_session.returns_one(event).returns_none().returns_none().returns_scalar(5)

        outcome = await engine.request_join(1, 9)

        assert outcome.request_id == 5
        assert outcome.status == "pending"
        assert outcome.created is True
        assert isinstance(mock_session.statements[-1], Insert)

    async def test_pending_invitation_blocks_request(self, engine, mock_session, event):
        pending = make_obj(make_member(event_id=1, user_id=9, status="pending"))
        mock_session.returns_one(event).returns_one(pending)
        with pytest.raises(AlreadyPending, match="invitation is already pending"):
            await engine.request_join(1, 9)

    async def test_active_member_rejected(self, engine, mock_session, event):
        mock_session.returns_one(event).returns_one(make_obj(make_member(event_id=1, user_id=9)))
        with pytest.raises(AlreadyMember):
            await engine.request_join(1, 9)

    async def test_pending_request_rejected(self, engine, mock_session, event):
        existing = make_obj(make_join_request(event_id=1, user_id=9, status="pending"))
        mock_session.returns_one(event).returns_none().returns_one(existing)
        with pytest.raises(AlreadyPending):
            await engine.request_join(1, 9)

    @pytest.mark.parametrize("previous", ["accepted", "declined", "cancelled"])
    async def test_terminal_request_reopened(self, engine, mock_session, event, previous):
        existing = make_obj(make_join_request(id=12, event_id=1, user_id=9, status=previous))
        mock_session.returns_one(event).returns_none().returns_one(existing)

        outcome = await engine.request_join(1, 9)

        assert outcome.request_id == 12
        assert outcome.reopened is True
        assert outcome.created is False
        reopen = mock_session.statements[-1]
        assert isinstance(reopen, Update)
        assert _params(reopen)["status"] == "pending"

    async def test_insert_race_reported_as_pending(self, engine, mock_session, event):
        error = IntegrityError("INSERT INTO event_join_requests ...", {}, Exception("duplicate"))
        mock_session.returns_one(event).returns_none().returns_none().raises(error)

        with pytest.raises(AlreadyPending):
            await engine.request_join(1, 9)
        mock_session.mock.rollback.assert_awaited_once()

    async def test_missing_event(self, engine, mock_session):
        mock_session.returns_none()
        with pytest.raises(NotFound):
            await engine.request_join(1, 9)


class TestAcceptJoinRequest:
    async def test_unknown_request(self, engine, mock_session):
        mock_session.returns_none()
        with pytest.raises(NotFound):
            await engine.accept_join_request(1, 12)

    async def test_request_of_another_event(self, engine, mock_session):
        mock_session.returns_one(make_obj(make_join_request(id=12, event_id=2)))
        with pytest.raises(NotFound):
            await engine.accept_join_request(1, 12)

    @pytest.mark.parametrize("status", ["accepted", "declined", "cancelled"])
    async def test_already_processed(self, engine, mock_session, status):
        mock_session.returns_one(make_obj(make_join_request(id=12, event_id=1, status=status)))
        with pytest.raises(AlreadyProcessed):
            await engine.accept_join_request(1, 12)

    async def test_creates_membership_and_marks_accepted(self, engine, mock_session):
        request = make_obj(make_join_request(id=12, event_id=1, user_id=9))
        (
            mock_session.returns_one(request)
            .returns_none()            # no membership yet
            .returns_scalar(300)       # insert member
            .returns_none()            # mint qr
            .returns_rowcount(1)       # resolve request
        )

        outcome = await engine.accept_join_request(1, 12)

        assert outcome.member_id == 300
        assert outcome.created is True
        assert _params(mock_session.statements[3])["qrCode"].startswith(DATA_URL_PREFIX)
        assert _params(mock_session.statements[-1])["status"] == "accepted"

    async def test_activates_pending_invitation(self, engine, mock_session):
        request = make_obj(make_join_request(id=12, event_id=1, user_id=9))
        pending = make_obj(make_member(id=60, event_id=1, user_id=9, status="pending"))
        mock_session.returns_one(request).returns_one(pending).returns_rowcount(1).returns_rowcount(1)

        outcome = await engine.accept_join_request(1, 12)

        assert outcome.member_id == 60
        assert outcome.activated is True
        assert _params(mock_session.statements[2])["status"] == "active"

    async def test_existing_member_only_resolves_request(self, engine, mock_session):
        request = make_obj(make_join_request(id=12, event_id=1, user_id=9))
        active = make_obj(make_member(id=60, event_id=1, user_id=9, status="active"))
        mock_session.returns_one(request).returns_one(active).returns_rowcount(1)

        outcome = await engine.accept_join_request(1, 12)

        assert outcome.already_member is True
        assert len(mock_session.statements) == 3
        assert _params(mock_session.statements[-1])["status"] == "accepted"


class TestDeclineAndCancel:
    async def test_decline_marks_declined(self, engine, mock_session):
        mock_session.returns_one(make_obj(make_join_request(id=12, event_id=1))).returns_rowcount(1)
        await engine.decline_join_request(1, 12)
        assert _params(mock_session.statements[-1])["status"] == "declined"

    async def test_decline_race(self, engine, mock_session):
        mock_session.returns_one(make_obj(make_join_request(id=12, event_id=1))).returns_rowcount(0)
        with pytest.raises(AlreadyProcessed):
            await engine.decline_join_request(1, 12)

    async def test_cancel_own_pending_request(self, engine, mock_session):
        mock_session.returns_rowcount(1)
        await engine.cancel_join_request(12, 9)
        assert _params(mock_session.statements[0])["status"] == "cancelled"
        mock_session.mock.commit.assert_awaited_once()

    async def test_cancel_unknown_or_processed(self, engine, mock_session):
        mock_session.returns_rowcount(0)
        with pytest.raises(NotFound):
            await engine.cancel_join_request(12, 9)
        mock_session.mock.rollback.assert_awaited_once()


class TestListings:
    async def test_event_requests_with_requester(self, engine, mock_session):
        request = make_obj(make_join_request(id=12, event_id=1, user_id=9))
        user = make_obj(make_user(id=9, firstName="Inês"))
        mock_session.returns_rows([(request, user)])

        requests = await engine.list_event_join_requests(1)

        assert requests[0]["id"] == 12
        assert requests[0]["userId"] == 9
        assert requests[0]["firstName"] == "Inês"
        assert requests[0]["requestedAt"] == request.createdAt.isoformat()

    async def test_user_requests_with_event_name(self, engine, mock_session):
        request = make_obj(make_join_request(id=12, event_id=1, user_id=9))
        mock_session.returns_rows([(request, make_obj(make_event(id=1, name="Sintra day trip")))])

        requests = await engine.list_user_join_requests(9)

        assert requests == [
            {
                "id": 12,
                "eventId": 1,
                "eventName": "Sintra day trip",
                "requestedAt": request.createdAt.isoformat(),
            }
        ]
