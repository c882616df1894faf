"""Collaborator-specific exception types.

Raised by the completion, session store and storage adapters. The chat
controller maps them onto error kinds; nothing above the controller sees
these types.
"""

from typing import Optional


class CollaboratorError(Exception):
    """Base exception for all collaborator errors."""

    def __init__(self, message: str, collaborator: str = ""):
        self.collaborator = collaborator
        super().__init__(message)


class CollaboratorAuthError(CollaboratorError):
    """Authentication or authorization failure (401/403, expired token)."""

    pass


class CollaboratorQuotaError(CollaboratorError):
    """The service refused because of a token or rate limit.

    ``code`` holds the structured error code when the service sent one.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retry_after: Optional[float] = None,
        collaborator: str = "",
    ):
        self.code = code
        self.retry_after = retry_after
        super().__init__(message, collaborator)


class CollaboratorAPIError(CollaboratorError):
    """Service returned an error response (4xx/5xx) or a malformed body."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        response_body: str = "",
        collaborator: str = "",
    ):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, collaborator)


class CollaboratorNotFoundError(CollaboratorAPIError):
    """Resource not found or not owned by the requesting user."""

    def __init__(self, message: str, collaborator: str = ""):
        super().__init__(message, status_code=404, collaborator=collaborator)


class CollaboratorTimeoutError(CollaboratorError):
    """Request timed out."""

    pass
