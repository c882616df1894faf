"""Test configuration and fixtures."""

import os
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables BEFORE importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["SUPABASE_URL"] = "http://supabase.test"
os.environ["ENABLE_AUTH"] = "false"

from knowledge_chat.chat.controller import ChatController
from knowledge_chat.chat.quota import QuotaTracker
from knowledge_chat.chat.types import ChatMessage, ChatSession, DailyUsage, UploadCounters, UploadRecord
from knowledge_chat.chat.uploads import UploadGate
from knowledge_chat.collaborators.completion import (
    BaseCompletionClient,
    CompletionResult,
    CompletionUsage,
)
from knowledge_chat.collaborators.exceptions import CollaboratorError, CollaboratorNotFoundError
from knowledge_chat.models.base import Base
from knowledge_chat.models.knowledge_upload import UploadKind

TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class InMemorySessionStore:
    """Session store keeping sessions and messages in dictionaries."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.sessions: Dict[uuid.UUID, ChatSession] = {}
        self.messages: Dict[uuid.UUID, List[ChatMessage]] = {}
        self.fail_with: Optional[Exception] = None
        self.list_calls = 0

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def add_session(
        self,
        title: str = "Existing chat",
        message_count: int = 0,
        last_message_at: Optional[datetime] = None,
        category: Optional[str] = None,
    ) -> ChatSession:
        when = last_message_at or self.clock()
        session = ChatSession(
            id=uuid.uuid4(),
            title=title,
            message_count=message_count,
            created_at=when,
            updated_at=when,
            last_message_at=when,
            category=category,
        )
        self.sessions[session.id] = session
        self.messages[session.id] = []
        return session

    def store_exchange(
        self,
        session_id: Optional[uuid.UUID],
        message: str,
        reply: str,
        category: Optional[str] = None,
    ) -> uuid.UUID:
        """Persist a user message and its reply the way the completion function does."""
        if session_id is None:
            session_id = self.add_session(title=message[:50], category=category).id
        now = self.clock()
        self.messages[session_id].extend([
            ChatMessage(uuid.uuid4(), session_id, "user", message, now),
            ChatMessage(uuid.uuid4(), session_id, "assistant", reply, now + timedelta(microseconds=1)),
        ])
        session = self.sessions[session_id]
        self.sessions[session_id] = ChatSession(
            id=session.id,
            title=session.title,
            message_count=session.message_count + 2,
            created_at=session.created_at,
            updated_at=now,
            last_message_at=now,
            category=session.category,
        )
        return session_id

    async def list_sessions(self) -> List[ChatSession]:
        self._check()
        self.list_calls += 1
        return sorted(self.sessions.values(), key=lambda s: s.last_message_at, reverse=True)

    async def get_session(self, session_id: uuid.UUID) -> Optional[ChatSession]:
        self._check()
        return self.sessions.get(session_id)

    async def list_messages(self, session_id: uuid.UUID) -> List[ChatMessage]:
        self._check()
        return list(self.messages.get(session_id, []))

    async def rename_session(self, session_id: uuid.UUID, title: str) -> ChatSession:
        self._check()
        session = self.sessions.get(session_id)
        if session is None:
            raise CollaboratorNotFoundError(f"Chat session {session_id} not found")
        renamed = ChatSession(
            id=session.id,
            title=title,
            message_count=session.message_count,
            created_at=session.created_at,
            updated_at=self.clock(),
            last_message_at=session.last_message_at,
            category=session.category,
        )
        self.sessions[session_id] = renamed
        return renamed

    async def delete_session(self, session_id: uuid.UUID):
        self._check()
        if session_id not in self.sessions:
            raise CollaboratorNotFoundError(f"Chat session {session_id} not found")
        del self.sessions[session_id]
        self.messages.pop(session_id, None)


class InMemoryUsageStore:
    def __init__(self):
        self.rows: Dict[date, DailyUsage] = {}
        self.save_calls = 0
        self.fail_with: Optional[Exception] = None

    async def load(self, day: date) -> DailyUsage:
        row = self.rows.get(day)
        if row is None:
            return DailyUsage(day=day)
        return DailyUsage(day=row.day, tokens_used=row.tokens_used, cooldown_ends_at=row.cooldown_ends_at)

    async def save(self, usage: DailyUsage):
        self.save_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.rows[usage.day] = DailyUsage(
            day=usage.day, tokens_used=usage.tokens_used, cooldown_ends_at=usage.cooldown_ends_at
        )


class FakeCompletionClient(BaseCompletionClient):
    """Completion client that writes the exchange into an in-memory store."""

    def __init__(self, store: InMemorySessionStore, tokens: int = 100, reply: str = "Hi there!"):
        self.store = store
        self.tokens = tokens
        self.reply = reply
        self.error: Optional[Exception] = None
        self.requests = []

    async def complete(self, request, user_id, access_token=None) -> CompletionResult:
        self.requests.append((request, user_id, access_token))
        if self.error is not None:
            raise self.error
        session_id = self.store.store_exchange(
            request.session_id, request.message, self.reply, request.category
        )
        return CompletionResult(
            content=self.reply,
            session_id=session_id,
            usage=CompletionUsage(total_tokens=self.tokens),
        )


class FakeUploadStorage:
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.stored: List[UploadRecord] = []
        self.error: Optional[Exception] = None
        self.initial_counts: Dict[UploadKind, int] = {}

    async def count_today(self, day: date) -> UploadCounters:
        counters = UploadCounters(day=day)
        counters.counts.update(self.initial_counts)
        for record in self.stored:
            if record.created_at.date() == day:
                counters.increment(record.file_type)
        return counters

    async def store(self, kind, file_name, content, content_type, session_id=None) -> UploadRecord:
        if self.error is not None:
            raise self.error
        record = UploadRecord(
            id=uuid.uuid4(),
            session_id=session_id,
            file_name=file_name,
            file_type=kind,
            file_size=len(content),
            storage_path=f"ai-knowledge-uploads/{file_name}",
            status="uploaded",
            created_at=self.clock(),
        )
        self.stored.append(record)
        return record

    async def list_session_uploads(self, session_id: uuid.UUID) -> List[UploadRecord]:
        return [r for r in self.stored if r.session_id == session_id]

    async def delete_upload(self, upload_id: uuid.UUID):
        remaining = [r for r in self.stored if r.id != upload_id]
        if len(remaining) == len(self.stored):
            raise CollaboratorNotFoundError(f"Upload {upload_id} not found")
        self.stored = remaining


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock) -> QuotaTracker:
    return QuotaTracker(clock=clock)


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def session_store(clock) -> InMemorySessionStore:
    return InMemorySessionStore(clock)


@pytest.fixture
def usage_store() -> InMemoryUsageStore:
    return InMemoryUsageStore()


@pytest.fixture
def completion(session_store) -> FakeCompletionClient:
    return FakeCompletionClient(session_store)


@pytest.fixture
def upload_storage(clock) -> FakeUploadStorage:
    return FakeUploadStorage(clock)


@pytest.fixture
def make_controller(tracker, session_store, usage_store, completion, upload_storage):
    """Build controllers wired to the in-memory collaborators."""

    def build(user_id: uuid.UUID) -> ChatController:
        return ChatController(
            user_id=user_id,
            tracker=tracker,
            session_store=session_store,
            usage_store=usage_store,
            completion=completion,
            upload_gate=UploadGate(tracker, upload_storage),
            poll_interval=0.01,
        )

    return build


@pytest_asyncio.fixture
async def controller(make_controller, user_id):
    ctrl = make_controller(user_id)
    await ctrl.load()
    yield ctrl
    await ctrl.shutdown()


@pytest_asyncio.fixture
async def db_session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def collaborator_failure() -> CollaboratorError:
    return CollaboratorError("upstream unavailable", collaborator="test")
