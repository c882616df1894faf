"""Database models for Knowledge Chat."""

from .base import Base
from .chat import AIChatSession, AIChatMessage, MessageRole
from .daily_usage import ChatDailyUsage
from .knowledge_upload import KnowledgeUpload, UploadKind, UploadStatus

__all__ = [
    "Base",
    "AIChatSession",
    "AIChatMessage",
    "MessageRole",
    "ChatDailyUsage",
    "KnowledgeUpload",
    "UploadKind",
    "UploadStatus",
]
