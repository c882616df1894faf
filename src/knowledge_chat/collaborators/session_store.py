"""Session and message reads/writes against the hosted database.

Every query is scoped to the user the store was created for.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..chat.types import ChatMessage, ChatSession
from ..models.chat import AIChatMessage, AIChatSession
from .exceptions import CollaboratorError, CollaboratorNotFoundError

logger = logging.getLogger(__name__)

COLLABORATOR = "session_store"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps returned by backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def to_chat_session(row: AIChatSession) -> ChatSession:
    return ChatSession(
        id=row.id,
        title=row.title,
        category=row.category,
        message_count=row.message_count,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        last_message_at=as_utc(row.last_message_at),
    )


def to_chat_message(row: AIChatMessage) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        session_id=row.session_id,
        role=row.role.value,
        content=row.content,
        created_at=as_utc(row.created_at),
    )


class SessionStore:
    """Pass-through CRUD over ``ai_chat_sessions`` and ``ai_chat_messages``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], user_id: uuid.UUID):
        self._session_factory = session_factory
        self.user_id = user_id

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise CollaboratorError(
                f"Session store error: {exc}", collaborator=COLLABORATOR
            ) from exc

    async def _get_owned(self, db: AsyncSession, session_id: uuid.UUID) -> AIChatSession:
        row = (
            await db.execute(
                select(AIChatSession).where(
                    AIChatSession.id == session_id,
                    AIChatSession.user_id == self.user_id,
                )
            )
        ).scalar_one_or_none()
        if row is None:
            raise CollaboratorNotFoundError(
                f"Chat session {session_id} not found", collaborator=COLLABORATOR
            )
        return row

    async def list_sessions(self) -> List[ChatSession]:
        """All of the user's sessions, most recent activity first."""
        async with self._session() as db:
            rows = (
                await db.execute(
                    select(AIChatSession)
                    .where(AIChatSession.user_id == self.user_id)
                    .order_by(AIChatSession.last_message_at.desc())
                )
            ).scalars().all()
            return [to_chat_session(row) for row in rows]

    async def get_session(self, session_id: uuid.UUID) -> Optional[ChatSession]:
        async with self._session() as db:
            try:
                row = await self._get_owned(db, session_id)
            except CollaboratorNotFoundError:
                return None
            return to_chat_session(row)

    async def list_messages(self, session_id: uuid.UUID) -> List[ChatMessage]:
        """Messages of one session in creation order."""
        async with self._session() as db:
            rows = (
                await db.execute(
                    select(AIChatMessage)
                    .where(
                        AIChatMessage.session_id == session_id,
                        AIChatMessage.user_id == self.user_id,
                    )
                    .order_by(AIChatMessage.created_at.asc())
                )
            ).scalars().all()
            return [to_chat_message(row) for row in rows]

    async def rename_session(self, session_id: uuid.UUID, title: str) -> ChatSession:
        async with self._session() as db:
            row = await self._get_owned(db, session_id)
            row.title = title
            await db.commit()
            await db.refresh(row)
            logger.info("Renamed chat session %s", session_id)
            return to_chat_session(row)

    async def delete_session(self, session_id: uuid.UUID):
        """Delete a session and its messages."""
        async with self._session() as db:
            await self._get_owned(db, session_id)
            await db.execute(
                delete(AIChatMessage).where(AIChatMessage.session_id == session_id)
            )
            await db.execute(
                delete(AIChatSession).where(
                    AIChatSession.id == session_id,
                    AIChatSession.user_id == self.user_id,
                )
            )
            await db.commit()
            logger.info("Deleted chat session %s", session_id)
