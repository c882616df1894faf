"""Plain value types shared by the chat orchestrator and its collaborators."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional

from ..models.knowledge_upload import UploadKind


@dataclass(frozen=True)
class ChatSession:
    """Snapshot of a stored conversation."""
    id: uuid.UUID
    title: str
    message_count: int
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime
    category: Optional[str] = None


@dataclass(frozen=True)
class ChatMessage:
    """Snapshot of a stored message."""
    id: uuid.UUID
    session_id: uuid.UUID
    role: str
    content: str
    created_at: datetime


@dataclass
class DailyUsage:
    """Token consumption for one user on one UTC day."""
    day: date
    tokens_used: int = 0
    cooldown_ends_at: Optional[datetime] = None


@dataclass
class UploadCounters:
    """Uploads made today, per attachment kind."""
    day: date
    counts: Dict[UploadKind, int] = field(
        default_factory=lambda: {UploadKind.PDF: 0, UploadKind.IMAGE: 0}
    )

    def __getitem__(self, kind: UploadKind) -> int:
        return self.counts.get(kind, 0)

    def increment(self, kind: UploadKind):
        self.counts[kind] = self.counts.get(kind, 0) + 1

    @property
    def pdf_count(self) -> int:
        return self[UploadKind.PDF]

    @property
    def image_count(self) -> int:
        return self[UploadKind.IMAGE]


@dataclass(frozen=True)
class UploadRecord:
    """A stored attachment."""
    id: uuid.UUID
    session_id: Optional[uuid.UUID]
    file_name: str
    file_type: UploadKind
    file_size: int
    storage_path: str
    status: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "session_id": str(self.session_id) if self.session_id else None,
            "file_name": self.file_name,
            "file_type": self.file_type.value,
            "file_size": self.file_size,
            "storage_path": self.storage_path,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }
