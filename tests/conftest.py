"""
conftest.py - Shared pytest fixtures for the live session tests

Every test gets a fresh in-memory database, a clock frozen at
2025-03-10 09:00 UTC and a notifier that records what was sent.
"""

import pytest
from sqlmodel import Session

from services.live_session.clock import FixedClock
from services.live_session.ledger import Ledger
from services.live_session.service import LiveSessionService

from tests.support import RecordingNotifier, at, make_engine


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def clock():
    return FixedClock(at(9, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ledger(db, clock):
    return Ledger(db, clock)


@pytest.fixture
def service(db, clock, notifier):
    return LiveSessionService(db, clock=clock, notifier=notifier)


@pytest.fixture
def booked(service):
    """A 10:00 / 60 min session hosted by 'host' with 'alice' accepted and 'bob' invited."""
    s = service.create_session("host", at(10, 0), 60, ["alice", "bob"], title="Code review")
    service.respond_to_invite("alice", s.id, "accept")
    return s
