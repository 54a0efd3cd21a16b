"""
Tests for the table definitions: timestamps are stored as naive UTC.
"""

from datetime import datetime

import pytest
from sqlalchemy import DateTime
from sqlmodel import Session

from services.live_session.models import (
    LedgerEntry, LiveSession, ProcessedMessage, SessionParticipant, Wallet,
)

from tests.support import at

TABLES = [LiveSession, SessionParticipant, Wallet, LedgerEntry, ProcessedMessage]


def datetime_columns():
    for model in TABLES:
        for column in model.__table__.columns:
            if column.name.endswith(("_at", "_start", "_end")):
                yield model.__name__, column


@pytest.mark.parametrize("table,column", list(datetime_columns()), ids=lambda v: getattr(v, "name", v))
def test_timestamp_columns_are_naive_datetime(table, column):
    assert type(column.type) is DateTime
    assert not column.type.timezone


def test_naive_values_round_trip(engine):
    with Session(engine) as s:
        row = LiveSession(host_id="host", scheduled_start=at(10, 0), duration_minutes=45,
                          actual_start=at(10, 5), created_at=at(9, 0))
        s.add(row)
        s.commit()
        sid = row.id

    with Session(engine) as s:
        row = s.get(LiveSession, sid)
        assert row.scheduled_start == datetime(2025, 3, 10, 10, 0)
        assert row.scheduled_start.tzinfo is None
        assert row.actual_start == at(10, 5)
        assert row.planned_end == at(10, 45)
