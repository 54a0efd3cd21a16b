"""
Tests for read-time status reconciliation and the catch-up sweep.
"""

import pytest
from sqlalchemy.exc import OperationalError

from services.live_session.errors import InvalidTransitionError
from services.live_session.models import CANCELLED, ENDED, LIVE, SCHEDULED, LiveSession
from services.live_session.notifications import SESSION_ENDED, SESSION_STATUS_CHANGED

from tests.support import at, entries


class TestReconcile:

    def test_nothing_happens_before_start(self, service, booked, notifier):
        assert service.get_session("host", booked.id).status == SCHEDULED
        assert notifier.events(SESSION_STATUS_CHANGED) == []

    def test_scheduled_session_goes_live_at_start_time(self, service, booked, clock, notifier):
        clock.set(at(10, 0))
        s = service.get_session("alice", booked.id)

        assert s.status == LIVE
        assert s.actual_start.replace(tzinfo=None) == at(10, 0)
        assert sorted(notifier.recipients(SESSION_STATUS_CHANGED)) == ["alice", "host"]

    def test_expired_session_is_settled_on_read(self, service, booked, clock, ledger):
        clock.set(at(11, 5))
        s = service.get_session("host", booked.id)

        assert s.status == ENDED
        # never started: billed from the scheduled start until the read
        assert ledger.summary("alice").balance == 330 - 65
        assert ledger.summary("host").balance == 330 + 65

    def test_session_at_exact_planned_end_is_not_settled(self, service, booked, clock):
        clock.set(at(11, 0))
        assert service.get_session("host", booked.id).status == LIVE

    def test_live_session_past_end_is_settled(self, service, booked, clock, ledger, notifier):
        clock.set(at(10, 5))
        service.start_session("host", booked.id)
        clock.set(at(11, 30))

        sessions = service.list_sessions("alice")

        assert sessions == []
        assert ledger.summary("alice").balance == 330 - 85
        assert sorted(notifier.recipients(SESSION_ENDED)) == ["alice", "host"]

    def test_terminal_session_is_left_alone(self, service, booked, clock, db):
        service.cancel_session("host", booked.id)
        clock.set(at(12, 0))

        assert service.get_session("host", booked.id).status == CANCELLED
        assert entries(db, "spend") == []

    def test_database_failure_keeps_read_working(self, service, booked, clock, monkeypatch):
        def boom(session_id):
            raise OperationalError("UPDATE live_session", {}, Exception("db down"))

        monkeypatch.setattr(service.settlement, "terminate", boom)
        clock.set(at(12, 0))

        s = service.get_session("host", booked.id)
        assert s.status == SCHEDULED

    def test_join_reconciles_first(self, service, booked, clock):
        clock.set(at(10, 1))
        info = service.join_session("alice", booked.id)
        assert info.session.status == LIVE
        assert not info.is_host


class TestSweep:

    def test_sweep_promotes_and_terminates(self, service, clock, ledger):
        early = service.create_session("host", at(9, 0), 45, ["alice"])
        service.respond_to_invite("alice", early.id, "accept")
        later = service.create_session("host", at(10, 0), 45)
        future = service.create_session("host", at(14, 0), 45)

        clock.set(at(10, 10))
        report = service.sweep()

        assert report.terminated == 1
        assert report.promoted == 1
        statuses = {s.id: s.status for s in service.list_sessions("host", "all")}
        assert statuses == {early.id: ENDED, later.id: LIVE, future.id: SCHEDULED}
        assert ledger.summary("alice").balance == 330 - 70

    def test_sweep_purges_cancelled_sessions_nobody_accepted(self, service, db):
        dropped = service.create_session("host", at(10, 0), 45, ["bob"])
        kept = service.create_session("host", at(12, 0), 45, ["alice"])
        service.respond_to_invite("alice", kept.id, "accept")
        service.cancel_session("host", dropped.id)
        service.cancel_session("host", kept.id)

        report = service.sweep()

        assert report.purged == 1
        assert db.get(LiveSession, dropped.id) is None
        assert db.get(LiveSession, kept.id).status == CANCELLED

    def test_sweep_without_work(self, service):
        report = service.sweep()
        assert (report.promoted, report.terminated, report.purged) == (0, 0, 0)


class TestListing:

    def test_filters(self, service, booked, clock):
        other = service.create_session("host", at(13, 0), 45)
        service.cancel_session("host", other.id)

        assert [s.id for s in service.list_sessions("host")] == [booked.id]
        assert [s.id for s in service.list_sessions("host", "history")] == [other.id]
        assert {s.id for s in service.list_sessions("host", "all")} == {booked.id, other.id}

    def test_invited_only_user_does_not_see_session_in_list(self, service, booked):
        assert service.list_sessions("bob") == []
        assert [s.id for s in service.list_pending_invites("bob")] == [booked.id]

    def test_pending_invites_drop_started_sessions(self, service, booked, clock):
        clock.set(at(10, 0))
        assert service.list_pending_invites("bob") == []


class TestWritesOnExpiredSessions:

    @pytest.fixture
    def unread(self, service):
        """10:00 / 60 min session with alice invited, nobody reads it until after 11:00."""
        return service.create_session("host", at(10, 0), 60, ["alice"])

    def test_accept_after_planned_end_is_rejected(self, service, unread, clock, db, ledger):
        clock.set(at(15, 0))
        with pytest.raises(InvalidTransitionError):
            service.respond_to_invite("alice", unread.id, "accept")

        assert entries(db, "spend") == []
        assert ledger.summary("alice").balance == 330
        assert service.get_session("alice", unread.id).accepted_ids == []

    def test_later_listing_does_not_charge_late_accept(self, service, unread, clock, db):
        clock.set(at(15, 0))
        with pytest.raises(InvalidTransitionError):
            service.respond_to_invite("alice", unread.id, "accept")
        service.list_sessions("host", "all")

        assert entries(db, "spend") == []

    def test_leave_after_planned_end_is_rejected(self, service, unread, clock):
        clock.set(at(11, 1))
        with pytest.raises(InvalidTransitionError):
            service.leave_session("alice", unread.id)

    def test_start_after_planned_end_is_rejected(self, service, unread, clock):
        clock.set(at(11, 1))
        with pytest.raises(InvalidTransitionError):
            service.start_session("host", unread.id)
        assert service.get_session("host", unread.id).status == ENDED

    def test_cancel_after_planned_end_is_rejected(self, service, unread, clock):
        clock.set(at(11, 1))
        with pytest.raises(InvalidTransitionError):
            service.cancel_session("host", unread.id)
        assert service.get_session("host", unread.id).status == ENDED

    def test_late_start_within_window_still_works(self, service, unread, clock):
        clock.set(at(10, 20))
        s = service.start_session("host", unread.id)

        assert s.status == LIVE
        assert s.actual_start.replace(tzinfo=None) == at(10, 20)

    def test_accept_after_start_time_promotes_first(self, service, unread, clock):
        clock.set(at(10, 20))
        s = service.respond_to_invite("alice", unread.id, "accept")

        assert s.status == LIVE
        assert s.accepted_ids == ["alice"]
