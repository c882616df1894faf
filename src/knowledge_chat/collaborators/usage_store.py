"""Persistence of the per-user daily token counter."""

import logging
import uuid
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..chat.types import DailyUsage
from ..models.daily_usage import ChatDailyUsage
from .exceptions import CollaboratorError
from .session_store import as_utc

logger = logging.getLogger(__name__)

COLLABORATOR = "usage_store"


class UsageStore:
    """Reads and writes ``ai_chat_daily_usage`` rows for one user."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], user_id: uuid.UUID):
        self._session_factory = session_factory
        self.user_id = user_id

    async def load(self, day: date) -> DailyUsage:
        """Return the stored usage for ``day``, or a fresh zeroed record."""
        try:
            async with self._session_factory() as db:
                row = (
                    await db.execute(
                        select(ChatDailyUsage).where(
                            ChatDailyUsage.user_id == self.user_id,
                            ChatDailyUsage.day == day,
                        )
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise CollaboratorError(
                f"Failed to load daily usage: {exc}", collaborator=COLLABORATOR
            ) from exc

        if row is None:
            return DailyUsage(day=day)
        return DailyUsage(
            day=row.day,
            tokens_used=row.tokens_used,
            cooldown_ends_at=as_utc(row.cooldown_ends_at),
        )

    async def save(self, usage: DailyUsage):
        """Upsert the usage row for ``usage.day``."""
        values = {
            "tokens_used": usage.tokens_used,
            "cooldown_ends_at": usage.cooldown_ends_at,
        }
        statement = (
            update(ChatDailyUsage)
            .where(
                ChatDailyUsage.user_id == self.user_id,
                ChatDailyUsage.day == usage.day,
            )
            .values(**values)
        )
        try:
            async with self._session_factory() as db:
                result = await db.execute(statement)
                if (result.rowcount or 0) == 0:
                    db.add(ChatDailyUsage(user_id=self.user_id, day=usage.day, **values))

                try:
                    await db.commit()
                except IntegrityError:
                    # Another writer inserted today's row first.
                    await db.rollback()
                    await db.execute(statement)
                    await db.commit()
        except SQLAlchemyError as exc:
            raise CollaboratorError(
                f"Failed to save daily usage: {exc}", collaborator=COLLABORATOR
            ) from exc
