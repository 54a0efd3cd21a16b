"""
support.py - Shared helpers for the live session tests

- make_engine(): in-memory SQLite engine with all tables created
- RecordingNotifier / BrokenNotifier: Notifier test doubles
- at(): naive UTC datetimes on the test day
"""

from datetime import datetime

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from services.live_session import models  # noqa: F401
from services.live_session.models import LedgerEntry

TEST_DAY = (2025, 3, 10)


def at(hour: int, minute: int = 0, day: int = TEST_DAY[2]) -> datetime:
    return datetime(TEST_DAY[0], TEST_DAY[1], day, hour, minute)


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


def entries(db: Session, kind: str = None, owner_id: str = None):
    stmt = select(LedgerEntry)
    if kind:
        stmt = stmt.where(LedgerEntry.kind == kind)
    if owner_id:
        stmt = stmt.where(LedgerEntry.owner_id == owner_id)
    return list(db.exec(stmt.order_by(LedgerEntry.id)).all())


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, message):
        self.sent.append((user_id, message))

    def events(self, event=None):
        return [(uid, m) for uid, m in self.sent if event is None or m.event == event]

    def recipients(self, event=None):
        return [uid for uid, _ in self.events(event)]


class BrokenNotifier:
    def __init__(self):
        self.calls = 0

    def notify(self, user_id, message):
        self.calls += 1
        raise RuntimeError("broker down")
