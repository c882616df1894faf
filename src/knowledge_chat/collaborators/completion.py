"""Client for the hosted AI completion function.

The function creates the session on first use, stores the user and
assistant messages and returns the generated content with token usage:

    POST {completion_url}
    {"message": ..., "userId": ..., "sessionId"?: ..., "category"?: ...,
     "fileContext"?: ...}
    -> {"success": true, "sessionId": ..., "message": ..., "usage": {...}}

Quota conditions are recognised by HTTP 429 or a structured ``code`` in the
error body. Matching phrases in the error text is a fallback kept inside
``is_quota_failure_text``.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .exceptions import (
    CollaboratorAPIError,
    CollaboratorAuthError,
    CollaboratorError,
    CollaboratorQuotaError,
    CollaboratorTimeoutError,
)

logger = logging.getLogger(__name__)

COLLABORATOR = "completion"

QUOTA_ERROR_CODES = frozenset({"token_limit", "rate_limit", "quota_exceeded"})

_QUOTA_PHRASES = ("token limit", "rate limit", "too many requests", "quota exceeded")


@dataclass(frozen=True)
class CompletionRequest:
    message: str
    session_id: Optional[uuid.UUID] = None
    category: Optional[str] = None
    file_context: Optional[str] = None


@dataclass(frozen=True)
class CompletionUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class CompletionResult:
    content: str
    session_id: uuid.UUID
    usage: Optional[CompletionUsage] = None

    @property
    def total_tokens(self) -> int:
        return self.usage.total_tokens if self.usage else 0


def is_quota_failure_text(text: Optional[str]) -> bool:
    """Last-resort detection of quota failures from free-form error text."""
    if not text:
        return False
    lowered = text.lower()
    return any(phrase in lowered for phrase in _QUOTA_PHRASES)


def is_quota_condition(exc: Exception) -> bool:
    """Whether a completion failure means the user hit a token or rate limit."""
    if isinstance(exc, CollaboratorQuotaError):
        return True
    return is_quota_failure_text(str(exc))


class BaseCompletionClient(ABC):
    """Interface of the completion collaborator."""

    @abstractmethod
    async def complete(
        self,
        request: CompletionRequest,
        user_id: uuid.UUID,
        access_token: Optional[str] = None,
    ) -> CompletionResult:
        """Send one user message and return the assistant reply."""


class HTTPCompletionClient(BaseCompletionClient):
    """Calls the completion function over HTTP."""

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        anon_key: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.url = url
        self._http = http_client
        self._api_key = api_key
        self._anon_key = anon_key
        self._timeout = timeout

    def _headers(self, access_token: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        bearer = access_token or self._api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        if self._anon_key:
            headers["apikey"] = self._anon_key
        return headers

    @staticmethod
    def _build_body(request: CompletionRequest, user_id: uuid.UUID) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": request.message, "userId": str(user_id)}
        if request.session_id is not None:
            body["sessionId"] = str(request.session_id)
        if request.category:
            body["category"] = request.category
        if request.file_context:
            body["fileContext"] = request.file_context
        return body

    async def complete(
        self,
        request: CompletionRequest,
        user_id: uuid.UUID,
        access_token: Optional[str] = None,
    ) -> CompletionResult:
        logger.debug(
            "Calling completion function (session=%s, chars=%d)",
            request.session_id,
            len(request.message),
        )
        try:
            response = await self._http.post(
                self.url,
                json=self._build_body(request, user_id),
                headers=self._headers(access_token),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise CollaboratorTimeoutError(
                "Completion request timed out", collaborator=COLLABORATOR
            ) from exc
        except httpx.HTTPError as exc:
            raise CollaboratorError(
                f"Completion request failed: {exc}", collaborator=COLLABORATOR
            ) from exc

        data = _json_body(response)
        _raise_for_failure(response, data)
        return _parse_result(response, data)


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _raise_for_failure(response: httpx.Response, data: Dict[str, Any]):
    status = response.status_code
    error_text = data.get("error") or (response.text[:500] if status >= 400 else "")
    code = data.get("code")

    if status in (401, 403):
        raise CollaboratorAuthError(
            f"Completion authentication failed: HTTP {status}", collaborator=COLLABORATOR
        )

    if status == 429 or code in QUOTA_ERROR_CODES:
        raise CollaboratorQuotaError(
            error_text or "Completion quota exceeded",
            code=code or "rate_limit",
            retry_after=_parse_retry_after(response),
            collaborator=COLLABORATOR,
        )

    if status >= 400 or not data.get("success"):
        if is_quota_failure_text(error_text):
            raise CollaboratorQuotaError(error_text, collaborator=COLLABORATOR)
        raise CollaboratorAPIError(
            error_text or f"Completion failed: HTTP {status}",
            status_code=status,
            response_body=response.text[:500],
            collaborator=COLLABORATOR,
        )


def _parse_result(response: httpx.Response, data: Dict[str, Any]) -> CompletionResult:
    try:
        session_id = uuid.UUID(str(data["sessionId"]))
    except (KeyError, ValueError) as exc:
        raise CollaboratorAPIError(
            "Completion response is missing a valid sessionId",
            status_code=response.status_code,
            response_body=response.text[:500],
            collaborator=COLLABORATOR,
        ) from exc

    usage = None
    raw_usage = data.get("usage")
    if isinstance(raw_usage, dict):
        try:
            usage = CompletionUsage(
                prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
                completion_tokens=int(raw_usage.get("completion_tokens") or 0),
                total_tokens=int(raw_usage.get("total_tokens") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise CollaboratorAPIError(
                "Completion response has malformed token usage",
                status_code=response.status_code,
                response_body=response.text[:500],
                collaborator=COLLABORATOR,
            ) from exc

    return CompletionResult(
        content=data.get("message") or "",
        session_id=session_id,
        usage=usage,
    )
