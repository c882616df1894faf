"""Adapters for the hosted services the chat orchestrator calls."""

from .exceptions import (
    CollaboratorError,
    CollaboratorAuthError,
    CollaboratorQuotaError,
    CollaboratorAPIError,
    CollaboratorNotFoundError,
    CollaboratorTimeoutError,
)

__all__ = [
    "CollaboratorError",
    "CollaboratorAuthError",
    "CollaboratorQuotaError",
    "CollaboratorAPIError",
    "CollaboratorNotFoundError",
    "CollaboratorTimeoutError",
]
