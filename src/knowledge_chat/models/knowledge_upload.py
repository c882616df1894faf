"""Attachment upload records."""

import enum
import uuid
from typing import Optional

from sqlalchemy import Enum, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class UploadKind(str, enum.Enum):
    """Attachment categories with their own daily allowance."""

    PDF = "pdf"
    IMAGE = "image"


class UploadStatus(str, enum.Enum):
    """Processing state of a stored attachment."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class KnowledgeUpload(Base):
    """A file stored in the knowledge upload bucket."""

    __tablename__ = "ai_knowledge_uploads"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    # No FK: uploads outlive the session they were attached to.
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[UploadKind] = mapped_column(
        Enum(
            UploadKind,
            name="uploadkind",
            create_constraint=False,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_path: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[UploadStatus] = mapped_column(
        Enum(
            UploadStatus,
            name="uploadstatus",
            create_constraint=False,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=UploadStatus.UPLOADED,
    )
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<KnowledgeUpload(file='{self.file_name}', type='{self.file_type.value}')>"
