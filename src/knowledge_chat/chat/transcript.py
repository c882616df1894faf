"""Visible message list with provisional and durable entries.

Sending a message is a two-phase update. Phase one appends a provisional
entry tagged with a local id. Phase two either replaces the whole list with
the durable messages read back from the store, or discards the provisional
entry.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .types import ChatMessage


class EntryKind(str, enum.Enum):
    PROVISIONAL = "provisional"
    DURABLE = "durable"


@dataclass(frozen=True)
class TranscriptEntry:
    """One visible message, either stored or awaiting confirmation."""
    kind: EntryKind
    role: str
    content: str
    created_at: datetime
    local_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    message_id: Optional[uuid.UUID] = None
    session_id: Optional[uuid.UUID] = None

    @property
    def is_provisional(self) -> bool:
        return self.kind is EntryKind.PROVISIONAL

    @classmethod
    def durable(cls, message: ChatMessage) -> "TranscriptEntry":
        return cls(
            kind=EntryKind.DURABLE,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
            local_id=str(message.id),
            message_id=message.id,
            session_id=message.session_id,
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "id": self.local_id,
            "session_id": str(self.session_id) if self.session_id else None,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


class Transcript:
    """Ordered list of transcript entries for the active session."""

    def __init__(self, entries: Iterable[TranscriptEntry] = ()):
        self._entries: List[TranscriptEntry] = list(entries)

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def append_provisional(
        self, content: str, session_id: Optional[uuid.UUID] = None, role: str = "user"
    ) -> TranscriptEntry:
        entry = TranscriptEntry(
            kind=EntryKind.PROVISIONAL,
            role=role,
            content=content,
            created_at=datetime.now(timezone.utc),
            session_id=session_id,
        )
        self._entries.append(entry)
        return entry

    def discard(self, entry: TranscriptEntry) -> bool:
        """Remove a provisional entry. Returns False if it is no longer present."""
        for index, existing in enumerate(self._entries):
            if existing.local_id == entry.local_id and existing.is_provisional:
                del self._entries[index]
                return True
        return False

    def replace_with_durable(self, messages: Iterable[ChatMessage]):
        """Replace every entry with the stored messages, in creation order."""
        ordered = sorted(messages, key=lambda m: m.created_at)
        self._entries = [TranscriptEntry.durable(m) for m in ordered]

    def clear(self):
        self._entries = []

    @property
    def provisional_count(self) -> int:
        return sum(1 for e in self._entries if e.is_provisional)
