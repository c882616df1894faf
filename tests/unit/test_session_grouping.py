"""Tests for date grouping of sessions."""

import uuid
from datetime import datetime, timedelta, timezone

from knowledge_chat.chat.grouping import group_sessions_by_date
from knowledge_chat.chat.types import ChatSession

START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _session(title, days_ago, hours=0):
    when = START - timedelta(days=days_ago, hours=hours)
    return ChatSession(
        id=uuid.uuid4(),
        title=title,
        message_count=2,
        created_at=when,
        updated_at=when,
        last_message_at=when,
    )


class TestGroupSessionsByDate:

    def test_buckets_in_order(self):
        sessions = [
            _session("old", 45),
            _session("today", 0, hours=1),
            _session("month", 12),
            _session("yesterday", 1),
            _session("week", 3),
        ]

        groups = group_sessions_by_date(sessions, START)

        assert [(label, [s.title for s in items]) for label, items in groups] == [
            ("Today", ["today"]),
            ("Yesterday", ["yesterday"]),
            ("Last 7 Days", ["week"]),
            ("Last 30 Days", ["month"]),
            ("Older", ["old"]),
        ]

    def test_empty_groups_omitted(self):
        groups = group_sessions_by_date([_session("a", 0), _session("b", 0, hours=3)], START)
        assert [label for label, _ in groups] == ["Today"]
        assert [s.title for s in groups[0][1]] == ["a", "b"]

    def test_no_sessions(self):
        assert group_sessions_by_date([], START) == []

    def test_calendar_day_boundary(self):
        # 13 hours before noon is the previous calendar day.
        groups = group_sessions_by_date([_session("late", 0, hours=13)], START)
        assert groups[0][0] == "Yesterday"
