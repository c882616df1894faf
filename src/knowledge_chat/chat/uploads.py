"""Upload gate: daily attachment allowance in front of the storage service."""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from ..collaborators.exceptions import CollaboratorError, CollaboratorNotFoundError
from ..models.knowledge_upload import UploadKind
from ..observability import metrics
from .errors import (
    ChatNotFoundError,
    ChatServiceError,
    ChatValidationError,
    ErrorKind,
    QuotaExceededError,
)
from .quota import QuotaTracker
from .types import UploadCounters, UploadRecord

logger = logging.getLogger(__name__)


class UnsupportedUploadError(ChatValidationError):
    """The file is neither a PDF nor an image."""


@dataclass(frozen=True)
class UploadPayload:
    file_name: str
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


def detect_upload_kind(content_type: Optional[str]) -> UploadKind:
    """Map a MIME type onto an attachment kind."""
    normalized = (content_type or "").split(";", 1)[0].strip().lower()
    if normalized == "application/pdf":
        return UploadKind.PDF
    if normalized.startswith("image/"):
        return UploadKind.IMAGE
    raise UnsupportedUploadError(
        f"Unsupported file type '{content_type}'. Only PDF files and images are accepted."
    )


class UploadGate:
    """Checks the daily allowance, stores the file, then counts it."""

    def __init__(self, tracker: QuotaTracker, storage, counters: Optional[UploadCounters] = None):
        self.tracker = tracker
        self.storage = storage
        self.counters = counters or UploadCounters(day=tracker.now().date())

    def _roll_day(self):
        today = self.tracker.now().date()
        if self.counters.day != today:
            self.counters = UploadCounters(day=today)

    async def refresh(self) -> UploadCounters:
        """Reload today's counts from the stored uploads."""
        try:
            self.counters = await self.storage.count_today(self.tracker.now().date())
        except CollaboratorError as exc:
            raise ChatServiceError(f"Failed to load upload counts: {exc}") from exc
        return self.counters

    async def request_upload(
        self,
        kind: UploadKind,
        file: UploadPayload,
        session_id: Optional[uuid.UUID] = None,
    ) -> UploadRecord:
        self._roll_day()
        decision = self.tracker.can_upload(self.counters, kind)
        if not decision:
            metrics.record_denial(ErrorKind.DAILY_LIMIT.value)
            limit = self.tracker.upload_limit(kind)
            raise QuotaExceededError(
                f"Daily limit reached. You can only upload {limit} {kind.value} files per day.",
                ErrorKind.DAILY_LIMIT,
                retry_after=decision.retry_after,
            )

        try:
            record = await self.storage.store(
                kind,
                file.file_name,
                file.content,
                file.content_type,
                session_id=session_id,
            )
        except CollaboratorError as exc:
            metrics.record_upload(kind.value, "failed")
            logger.warning("Upload of %s failed: %s", file.file_name, exc)
            raise ChatServiceError(f"Failed to upload file: {exc}") from exc

        self.counters.increment(kind)
        metrics.record_upload(kind.value, "stored")
        return record

    async def list_session_uploads(self, session_id: uuid.UUID) -> List[UploadRecord]:
        try:
            return await self.storage.list_session_uploads(session_id)
        except CollaboratorError as exc:
            raise ChatServiceError(f"Failed to list uploads: {exc}") from exc

    async def delete_upload(self, upload_id: uuid.UUID):
        """Delete a stored upload. Today's counts are reloaded afterwards."""
        try:
            await self.storage.delete_upload(upload_id)
        except CollaboratorNotFoundError as exc:
            raise ChatNotFoundError(str(exc)) from exc
        except CollaboratorError as exc:
            raise ChatServiceError(f"Failed to delete upload: {exc}") from exc
        await self.refresh()

    def usage_summary(self) -> dict:
        self._roll_day()
        return {
            kind.value: {
                "used": self.counters[kind],
                "limit": self.tracker.upload_limit(kind),
            }
            for kind in UploadKind
        }
