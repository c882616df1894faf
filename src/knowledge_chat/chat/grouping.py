"""Chronological grouping of sessions for the history sidebar."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from .types import ChatSession

TODAY = "Today"
YESTERDAY = "Yesterday"
LAST_7_DAYS = "Last 7 Days"
LAST_30_DAYS = "Last 30 Days"
OLDER = "Older"

GROUP_ORDER = (TODAY, YESTERDAY, LAST_7_DAYS, LAST_30_DAYS, OLDER)


def _activity_time(session: ChatSession) -> datetime:
    return session.last_message_at or session.updated_at


def _group_label(activity: datetime, now: datetime) -> str:
    days_ago = (now.date() - activity.astimezone(now.tzinfo).date()).days
    if days_ago <= 0:
        return TODAY
    if days_ago == 1:
        return YESTERDAY
    if days_ago < 7:
        return LAST_7_DAYS
    if days_ago < 30:
        return LAST_30_DAYS
    return OLDER


def group_sessions_by_date(
    sessions: Iterable[ChatSession], now: Optional[datetime] = None
) -> List[Tuple[str, List[ChatSession]]]:
    """Bucket sessions by last activity, most recent first.

    Empty groups are omitted. Calendar days are taken in the timezone of
    ``now`` (UTC by default).
    """
    if now is None:
        now = datetime.now(timezone.utc)

    buckets = {label: [] for label in GROUP_ORDER}
    for session in sorted(sessions, key=_activity_time, reverse=True):
        buckets[_group_label(_activity_time(session), now)].append(session)

    return [(label, buckets[label]) for label in GROUP_ORDER if buckets[label]]
