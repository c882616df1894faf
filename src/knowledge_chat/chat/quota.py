"""Quota tracker for chat messages and attachment uploads.

Three independent limits apply to sending a message:

- per-session message cap (``session_message_limit`` stored rows)
- per-day token budget (``daily_token_limit`` tokens)
- a cooldown window that starts once the token budget is exhausted

Uploads have their own per-kind daily allowance. All checks are local and
happen before any network call. They are a UX-level gate only: the
completion service meters tokens authoritatively.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from ..models.knowledge_upload import UploadKind
from .errors import ErrorKind
from .types import ChatSession, DailyUsage, UploadCounters

logger = logging.getLogger(__name__)

DEFAULT_SESSION_MESSAGE_LIMIT = 500
DEFAULT_DAILY_TOKEN_LIMIT = 100_000
DEFAULT_COOLDOWN = timedelta(hours=2)
DEFAULT_UPLOAD_LIMITS: Dict[UploadKind, int] = {
    UploadKind.PDF: 2,
    UploadKind.IMAGE: 2,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DenialReason(str, enum.Enum):
    """Why an action was denied."""

    SESSION_LIMIT = ErrorKind.SESSION_LIMIT.value
    TOKEN_LIMIT = ErrorKind.TOKEN_LIMIT.value
    DAILY_LIMIT = ErrorKind.DAILY_LIMIT.value


@dataclass(frozen=True)
class Decision:
    """Outcome of a quota check."""
    allowed: bool
    reason: Optional[DenialReason] = None
    retry_after: Optional[timedelta] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = Decision(allowed=True)


def denied(reason: DenialReason, retry_after: Optional[timedelta] = None) -> Decision:
    return Decision(allowed=False, reason=reason, retry_after=retry_after)


class QuotaTracker:
    """Decides whether an action is permitted and updates usage afterwards."""

    def __init__(
        self,
        session_message_limit: int = DEFAULT_SESSION_MESSAGE_LIMIT,
        daily_token_limit: int = DEFAULT_DAILY_TOKEN_LIMIT,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        upload_limits: Optional[Dict[UploadKind, int]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_message_limit = session_message_limit
        self.daily_token_limit = daily_token_limit
        self.cooldown = cooldown
        self.upload_limits = dict(upload_limits or DEFAULT_UPLOAD_LIMITS)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], datetime] = utc_now) -> "QuotaTracker":
        return cls(
            session_message_limit=settings.session_message_limit,
            daily_token_limit=settings.daily_token_limit,
            cooldown=timedelta(seconds=settings.token_cooldown_seconds),
            upload_limits={
                UploadKind.PDF: settings.daily_pdf_upload_limit,
                UploadKind.IMAGE: settings.daily_image_upload_limit,
            },
            clock=clock,
        )

    def now(self) -> datetime:
        return self._clock()

    # -- messages -----------------------------------------------------------

    def can_send_message(
        self, session: Optional[ChatSession], usage: DailyUsage
    ) -> Decision:
        """Check the session cap first, then the token budget."""
        if session is not None and session.message_count >= self.session_message_limit:
            return denied(DenialReason.SESSION_LIMIT)

        self.expire_cooldown(usage)
        if self.is_cooling_down(usage):
            return denied(DenialReason.TOKEN_LIMIT, self.cooldown_remaining(usage))

        return ALLOWED

    def is_cooling_down(self, usage: DailyUsage) -> bool:
        return (
            usage.tokens_used >= self.daily_token_limit
            and usage.cooldown_ends_at is not None
            and self.now() < usage.cooldown_ends_at
        )

    def has_active_cooldown(self, usage: DailyUsage) -> bool:
        return usage.cooldown_ends_at is not None and self.now() < usage.cooldown_ends_at

    def record_usage(self, usage: DailyUsage, tokens_consumed: int) -> DailyUsage:
        """Add a reported token cost. Starts the cooldown on crossing the budget."""
        if tokens_consumed < 0:
            raise ValueError("tokens_consumed must not be negative")

        usage.tokens_used += tokens_consumed
        if usage.tokens_used >= self.daily_token_limit and not self.has_active_cooldown(usage):
            usage.cooldown_ends_at = self.now() + self.cooldown
            logger.info(
                "Daily token budget reached (%d/%d), cooldown until %s",
                usage.tokens_used,
                self.daily_token_limit,
                usage.cooldown_ends_at.isoformat(),
            )
        return usage

    def start_cooldown(self, usage: DailyUsage) -> DailyUsage:
        """Begin a cooldown without a reported token cost.

        The usage is saturated to the budget so the cooldown is enforced by
        ``can_send_message``. An already active cooldown is left untouched.
        """
        if not self.has_active_cooldown(usage):
            usage.cooldown_ends_at = self.now() + self.cooldown
        usage.tokens_used = max(usage.tokens_used, self.daily_token_limit)
        return usage

    def expire_cooldown(self, usage: DailyUsage) -> bool:
        """Reset the budget once the cooldown has elapsed.

        Returns True when a reset happened.
        """
        if usage.cooldown_ends_at is None or self.now() < usage.cooldown_ends_at:
            return False
        usage.tokens_used = 0
        usage.cooldown_ends_at = None
        logger.info("Token cooldown elapsed, daily budget reset")
        return True

    def cooldown_remaining(self, usage: DailyUsage) -> timedelta:
        if usage.cooldown_ends_at is None:
            return timedelta(0)
        return max(usage.cooldown_ends_at - self.now(), timedelta(0))

    def tokens_remaining(self, usage: DailyUsage) -> int:
        return max(self.daily_token_limit - usage.tokens_used, 0)

    # -- uploads ------------------------------------------------------------

    def can_upload(self, counters: UploadCounters, kind: UploadKind) -> Decision:
        if counters[kind] >= self.upload_limit(kind):
            return denied(DenialReason.DAILY_LIMIT, self._until_next_day())
        return ALLOWED

    def upload_limit(self, kind: UploadKind) -> int:
        return self.upload_limits.get(kind, 0)

    def _until_next_day(self) -> timedelta:
        now = self.now()
        tomorrow = datetime.combine(
            now.date() + timedelta(days=1), datetime.min.time(), tzinfo=now.tzinfo
        )
        return tomorrow - now
