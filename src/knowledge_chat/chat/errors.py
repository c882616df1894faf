"""Error kinds raised by the chat orchestrator.

Every exception carries an ``ErrorKind`` so callers can choose the
user-visible action without inspecting messages.
"""

import enum
from datetime import timedelta
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Failure categories surfaced to the UI."""

    SESSION_LIMIT = "SESSION_LIMIT"
    TOKEN_LIMIT = "TOKEN_LIMIT"
    DAILY_LIMIT = "DAILY_LIMIT"
    SERVICE_FAILURE = "SERVICE_FAILURE"
    VALIDATION = "VALIDATION"


class ChatError(Exception):
    """Base exception for all chat orchestrator errors."""

    kind: ErrorKind = ErrorKind.SERVICE_FAILURE

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        super().__init__(message)


class ChatValidationError(ChatError):
    """Input rejected before any quota check or network call."""

    kind = ErrorKind.VALIDATION


class QuotaExceededError(ChatError):
    """A quota denied the action. Raised before any network call."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        retry_after: Optional[timedelta] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, kind)


class ChatServiceError(ChatError):
    """A collaborator call failed after the action was attempted."""

    kind = ErrorKind.SERVICE_FAILURE


class SendInProgressError(ChatError):
    """A message is already in flight for this controller."""

    kind = ErrorKind.VALIDATION


class ChatNotFoundError(ChatValidationError):
    """The referenced session or upload does not exist for this user."""
