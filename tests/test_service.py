"""
Tests for the service facade: joining the room, access to session
details and the wallet views.
"""

import pytest

from services.live_session.errors import (
    InsufficientCreditsError, JoinRejectedError, NotFoundError, NotParticipantError,
)
from services.live_session.models import RESET, SPEND
from services.live_session.service import JoinInfo

from tests.support import at


class TestJoin:

    def test_host_can_enter_fifteen_minutes_early(self, service, booked, clock):
        clock.set(at(9, 45))
        info = service.join_session("host", booked.id)

        assert isinstance(info, JoinInfo)
        assert info.is_host
        assert info.session.status == "scheduled"

    def test_too_early_is_rejected(self, service, booked, clock):
        clock.set(at(9, 44))
        with pytest.raises(JoinRejectedError):
            service.join_session("host", booked.id)

    def test_participant_waits_for_host(self, service, booked, clock):
        clock.set(at(9, 50))
        with pytest.raises(JoinRejectedError):
            service.join_session("alice", booked.id)

    def test_participant_joins_live_session(self, service, booked, clock):
        clock.set(at(9, 55))
        service.start_session("host", booked.id)

        info = service.join_session("alice", booked.id)
        assert not info.is_host
        assert info.session.status == "live"

    def test_invited_but_not_accepted(self, service, booked, clock):
        clock.set(at(10, 5))
        with pytest.raises(NotParticipantError):
            service.join_session("bob", booked.id)

    def test_stranger_cannot_join(self, service, booked, clock):
        clock.set(at(10, 5))
        with pytest.raises(NotParticipantError):
            service.join_session("mallory", booked.id)

    def test_balance_rechecked_on_join(self, service, booked, clock, ledger):
        ledger.spend("alice", None, 310)
        clock.set(at(10, 5))
        with pytest.raises(InsufficientCreditsError):
            service.join_session("alice", booked.id)

    def test_ended_session_cannot_be_joined(self, service, booked, clock):
        clock.set(at(11, 1))
        with pytest.raises(JoinRejectedError):
            service.join_session("host", booked.id)

    def test_cancelled_session_cannot_be_joined(self, service, booked):
        service.cancel_session("host", booked.id)
        with pytest.raises(JoinRejectedError):
            service.join_session("alice", booked.id)

    def test_unknown_session(self, service):
        with pytest.raises(NotFoundError):
            service.join_session("alice", 77)


class TestGetSession:

    def test_host_and_invitees_can_read(self, service, booked):
        assert service.get_session("host", booked.id).title == "Code review"
        assert service.get_session("bob", booked.id).id == booked.id

    def test_outsider_cannot_read(self, service, booked):
        with pytest.raises(NotParticipantError):
            service.get_session("mallory", booked.id)

    def test_unknown_session(self, service):
        with pytest.raises(NotFoundError):
            service.get_session("host", 12)


class TestWalletViews:

    def test_summary_and_history_after_settlement(self, service, booked, clock):
        clock.set(at(10, 40))
        service.end_session("host", booked.id)

        summary = service.get_wallet_summary("alice")
        assert summary.balance == 290
        assert summary.total_spent == 40
        assert summary.total_earned == 0
        assert summary.next_reset.tzinfo is not None

        history = service.get_wallet_history("alice")
        assert [e.kind for e in history] == [SPEND, RESET]
        assert history[0].session_id == booked.id
