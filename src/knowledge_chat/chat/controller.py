"""Per-user chat controller.

The controller is the single owner of one user's chat state: the session
list, the active session and its transcript, today's token usage and upload
counters, and whether a message is in flight. Every mutation notifies the
subscribed listeners with a fresh snapshot.

While a token cooldown is active a timer task polls once per
``poll_interval`` and resets the budget when the cooldown ends. The task is
cancelled by ``shutdown()``.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..collaborators.completion import (
    BaseCompletionClient,
    CompletionRequest,
    is_quota_condition,
)
from ..collaborators.exceptions import CollaboratorError, CollaboratorNotFoundError
from ..observability import metrics
from ..observability.logging import set_log_context
from .categories import is_known_category
from .errors import (
    ChatNotFoundError,
    ChatServiceError,
    ChatValidationError,
    ErrorKind,
    QuotaExceededError,
    SendInProgressError,
)
from .grouping import group_sessions_by_date
from .quota import DenialReason, QuotaTracker
from .transcript import Transcript
from .types import ChatSession, DailyUsage, UploadRecord
from .uploads import UploadGate, UploadPayload, detect_upload_kind

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]

MAX_TITLE_LENGTH = 255


@dataclass(frozen=True)
class SendResult:
    session_id: uuid.UUID
    content: str
    tokens_used: int

    def to_dict(self) -> dict:
        return {
            "session_id": str(self.session_id),
            "content": self.content,
            "tokens_used": self.tokens_used,
        }


def session_to_dict(session: ChatSession) -> dict:
    return {
        "id": str(session.id),
        "title": session.title,
        "category": session.category,
        "message_count": session.message_count,
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
        "last_message_at": session.last_message_at.isoformat(),
    }


class ChatController:
    """Owns and mutates the chat state of a single user."""

    def __init__(
        self,
        user_id: uuid.UUID,
        tracker: QuotaTracker,
        session_store,
        usage_store,
        completion: BaseCompletionClient,
        upload_gate: UploadGate,
        poll_interval: float = 1.0,
    ):
        self.user_id = user_id
        self.tracker = tracker
        self.session_store = session_store
        self.usage_store = usage_store
        self.completion = completion
        self.upload_gate = upload_gate
        self.poll_interval = poll_interval

        self.sessions: List[ChatSession] = []
        self.active_session_id: Optional[uuid.UUID] = None
        self.transcript = Transcript()
        self.usage = DailyUsage(day=tracker.now().date())
        self.selected_category: Optional[str] = None
        self.is_sending = False
        self.access_token: Optional[str] = None

        self._listeners: List[Listener] = []
        self._cooldown_task: Optional[asyncio.Task] = None
        self._load_lock = asyncio.Lock()
        self._loaded = False
        self._shutdown = False

    # -- subscriptions ------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Chat state listener failed")

    # -- state --------------------------------------------------------------

    @property
    def active_session(self) -> Optional[ChatSession]:
        if self.active_session_id is None:
            return None
        for session in self.sessions:
            if session.id == self.active_session_id:
                return session
        return None

    def _roll_usage_day(self):
        # A new UTC day starts from a fresh record, cooldown included.
        today = self.tracker.now().date()
        if self.usage.day != today:
            self.usage = DailyUsage(day=today)

    def usage_summary(self) -> dict:
        self._roll_usage_day()
        self.tracker.expire_cooldown(self.usage)
        remaining = self.tracker.cooldown_remaining(self.usage)
        return {
            "day": self.usage.day.isoformat(),
            "tokens_used": self.usage.tokens_used,
            "tokens_remaining": self.tracker.tokens_remaining(self.usage),
            "daily_limit": self.tracker.daily_token_limit,
            "cooldown_ends_at": (
                self.usage.cooldown_ends_at.isoformat() if self.usage.cooldown_ends_at else None
            ),
            "cooldown_remaining_seconds": int(remaining.total_seconds()),
        }

    def snapshot(self) -> Dict[str, Any]:
        active = self.active_session
        return {
            "user_id": str(self.user_id),
            "active_session_id": str(self.active_session_id) if self.active_session_id else None,
            "active_session": session_to_dict(active) if active else None,
            "session_message_limit": self.tracker.session_message_limit,
            "selected_category": self.selected_category,
            "is_sending": self.is_sending,
            "sessions": [session_to_dict(s) for s in self.sessions],
            "session_groups": [
                {"label": label, "sessions": [str(s.id) for s in group]}
                for label, group in group_sessions_by_date(self.sessions, self.tracker.now())
            ],
            "transcript": [entry.to_dict() for entry in self.transcript],
            "usage": self.usage_summary(),
            "uploads": self.upload_gate.usage_summary(),
        }

    # -- collaborator calls -------------------------------------------------

    async def _call(self, awaitable: Awaitable, action: str):
        try:
            return await awaitable
        except CollaboratorNotFoundError as exc:
            raise ChatNotFoundError(str(exc)) from exc
        except CollaboratorError as exc:
            logger.warning("%s failed: %s", action, exc)
            raise ChatServiceError(f"Failed to {action}: {exc}") from exc

    async def _save_usage(self):
        try:
            await self.usage_store.save(self.usage)
        except CollaboratorError as exc:
            logger.warning("Failed to persist daily usage: %s", exc)

    # -- loading and navigation ---------------------------------------------

    async def load(self):
        """Load sessions, today's usage and upload counts."""
        today = self.tracker.now().date()
        self.sessions = await self._call(self.session_store.list_sessions(), "load sessions")
        self.usage = await self._call(self.usage_store.load(today), "load usage")
        await self.upload_gate.refresh()
        if self.tracker.expire_cooldown(self.usage):
            await self._save_usage()
        self._watch_cooldown()
        self._loaded = True
        self._notify()

    async def ensure_loaded(self):
        async with self._load_lock:
            if not self._loaded:
                await self.load()

    async def refresh_sessions(self):
        self.sessions = await self._call(self.session_store.list_sessions(), "load sessions")
        self._notify()

    async def select_session(self, session_id: uuid.UUID) -> ChatSession:
        session = next((s for s in self.sessions if s.id == session_id), None)
        if session is None:
            session = await self._call(self.session_store.get_session(session_id), "load session")
        if session is None:
            raise ChatNotFoundError(f"Chat session {session_id} not found")

        messages = await self._call(
            self.session_store.list_messages(session_id), "load chat history"
        )
        self.active_session_id = session_id
        self.selected_category = session.category
        self.transcript.replace_with_durable(messages)
        set_log_context(session_id=str(session_id))
        self._notify()
        return session

    def new_chat(self):
        self.active_session_id = None
        self.selected_category = None
        self.transcript.clear()
        self._notify()

    def set_category(self, category: Optional[str]):
        if category is not None and not is_known_category(category):
            raise ChatValidationError(f"Unknown category '{category}'")
        self.selected_category = category
        self._notify()

    # -- message pipeline ---------------------------------------------------

    def check_send(self):
        """Raise if a message could not be sent right now."""
        self._roll_usage_day()
        decision = self.tracker.can_send_message(self.active_session, self.usage)
        if decision:
            return
        metrics.record_denial(decision.reason.value)
        if decision.reason is DenialReason.SESSION_LIMIT:
            raise QuotaExceededError(
                "This chat has reached its message limit. Start a new chat to continue.",
                ErrorKind.SESSION_LIMIT,
            )
        raise QuotaExceededError(
            "Daily token limit reached. Please wait for the cooldown to end.",
            ErrorKind.TOKEN_LIMIT,
            retry_after=decision.retry_after,
        )

    async def send_message(
        self,
        text: str,
        category: Optional[str] = None,
        file_context: Optional[str] = None,
    ) -> SendResult:
        """Send one message through quota check, optimistic insert and reconcile."""
        message = (text or "").strip()
        if not message:
            raise ChatValidationError("Message must not be empty")
        if self.is_sending:
            raise SendInProgressError("A message is already being sent")
        if category is None:
            category = self.selected_category
        if category is not None and not is_known_category(category):
            raise ChatValidationError(f"Unknown category '{category}'")

        self.check_send()

        entry = self.transcript.append_provisional(message, session_id=self.active_session_id)
        self.is_sending = True
        self._notify()

        started = time.monotonic()
        try:
            try:
                result = await self.completion.complete(
                    CompletionRequest(
                        message=message,
                        session_id=self.active_session_id,
                        category=category,
                        file_context=file_context,
                    ),
                    user_id=self.user_id,
                    access_token=self.access_token,
                )
            except CollaboratorError as exc:
                self.transcript.discard(entry)
                metrics.record_message("failed", time.monotonic() - started)
                if is_quota_condition(exc):
                    logger.warning("Completion refused for quota reasons: %s", exc)
                    self.tracker.start_cooldown(self.usage)
                    await self._save_usage()
                    self._watch_cooldown()
                    raise QuotaExceededError(
                        "Daily token limit reached. Please wait for the cooldown to end.",
                        ErrorKind.TOKEN_LIMIT,
                        retry_after=self.tracker.cooldown_remaining(self.usage),
                    ) from exc
                logger.warning("Completion failed: %s", exc)
                raise ChatServiceError(f"Failed to send message: {exc}") from exc
            except Exception as exc:
                self.transcript.discard(entry)
                metrics.record_message("failed", time.monotonic() - started)
                logger.exception("Unexpected completion failure")
                raise ChatServiceError(f"Failed to send message: {exc}") from exc

            metrics.record_message("success", time.monotonic() - started)
            metrics.record_tokens(result.total_tokens)
            self.tracker.record_usage(self.usage, result.total_tokens)
            await self._save_usage()
            self._watch_cooldown()

            if self.active_session_id is None:
                self.active_session_id = result.session_id
                self.selected_category = category
                set_log_context(session_id=str(result.session_id))

            try:
                await self._reconcile(self.active_session_id)
            except ChatServiceError as exc:
                # The exchange is stored; the next select or send reloads it.
                logger.warning("Exchange stored but transcript reload failed: %s", exc)
                self.transcript.append_provisional(
                    result.content, session_id=self.active_session_id, role="assistant"
                )
            logger.info(
                "Message exchange stored (tokens=%d, total_today=%d)",
                result.total_tokens,
                self.usage.tokens_used,
            )
            return SendResult(
                session_id=self.active_session_id,
                content=result.content,
                tokens_used=result.total_tokens,
            )
        finally:
            self.is_sending = False
            self._notify()

    async def _reconcile(self, session_id: uuid.UUID):
        """Replace the optimistic transcript with the stored one."""
        self.sessions = await self._call(self.session_store.list_sessions(), "load sessions")
        messages = await self._call(
            self.session_store.list_messages(session_id), "load chat history"
        )
        self.transcript.replace_with_durable(messages)

    # -- session management -------------------------------------------------

    async def rename_session(self, session_id: uuid.UUID, title: str) -> ChatSession:
        title = (title or "").strip()
        if not title:
            raise ChatValidationError("Title must not be empty")
        if len(title) > MAX_TITLE_LENGTH:
            raise ChatValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")

        renamed = await self._call(
            self.session_store.rename_session(session_id, title), "rename chat"
        )
        self.sessions = [renamed if s.id == session_id else s for s in self.sessions]
        self._notify()
        return renamed

    async def delete_session(self, session_id: uuid.UUID):
        await self._call(self.session_store.delete_session(session_id), "delete chat")
        self.sessions = [s for s in self.sessions if s.id != session_id]
        if self.active_session_id == session_id:
            self.active_session_id = None
            self.selected_category = None
            self.transcript.clear()
        self._notify()

    # -- uploads ------------------------------------------------------------

    async def request_upload(self, file: UploadPayload) -> UploadRecord:
        kind = detect_upload_kind(file.content_type)
        record = await self.upload_gate.request_upload(
            kind, file, session_id=self.active_session_id
        )
        self._notify()
        return record

    async def list_uploads(self, session_id: Optional[uuid.UUID] = None) -> List[UploadRecord]:
        """Uploads attached to a session, the active one by default."""
        session_id = session_id or self.active_session_id
        if session_id is None:
            return []
        return await self.upload_gate.list_session_uploads(session_id)

    async def delete_upload(self, upload_id: uuid.UUID):
        await self.upload_gate.delete_upload(upload_id)
        self._notify()

    # -- cooldown timer -----------------------------------------------------

    def cooldown_active(self) -> bool:
        return self.tracker.has_active_cooldown(self.usage)

    def _watch_cooldown(self):
        if self._shutdown or not self.cooldown_active():
            return
        if self._cooldown_task is None or self._cooldown_task.done():
            self._cooldown_task = asyncio.create_task(self._cooldown_loop())

    async def _cooldown_loop(self):
        """Poll until the cooldown ends, then reset the token budget."""
        while not self._shutdown:
            try:
                await asyncio.sleep(self.poll_interval)
                self._roll_usage_day()
                if self.tracker.expire_cooldown(self.usage):
                    await self._save_usage()
                    self._notify()
                    break
                if self.usage.cooldown_ends_at is None:
                    break
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in cooldown timer: %s", e)

    async def shutdown(self):
        """Cancel the cooldown timer and drop listeners."""
        self._shutdown = True
        if self._cooldown_task and not self._cooldown_task.done():
            self._cooldown_task.cancel()
            try:
                await self._cooldown_task
            except asyncio.CancelledError:
                pass
        self._listeners.clear()


ControllerFactory = Callable[[uuid.UUID], ChatController]
