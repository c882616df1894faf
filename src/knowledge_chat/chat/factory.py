"""Wiring of per-user controllers from settings and shared resources."""

import uuid

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..collaborators.completion import HTTPCompletionClient
from ..collaborators.session_store import SessionStore
from ..collaborators.storage import UploadStorage
from ..collaborators.usage_store import UsageStore
from ..config import Settings
from .controller import ChatController, ControllerFactory
from .quota import QuotaTracker
from .uploads import UploadGate


def create_controller_factory(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient,
) -> ControllerFactory:
    """Return a callable building a fully wired controller for a user id."""
    completion_url = settings.get_completion_url()
    storage_url = settings.get_storage_url()

    def build(user_id: uuid.UUID) -> ChatController:
        tracker = QuotaTracker.from_settings(settings)
        storage = UploadStorage(
            session_factory,
            http_client,
            user_id,
            storage_url=storage_url,
            bucket=settings.storage_bucket,
            service_key=settings.supabase_service_role_key,
            timeout=settings.storage_timeout,
        )
        return ChatController(
            user_id=user_id,
            tracker=tracker,
            session_store=SessionStore(session_factory, user_id),
            usage_store=UsageStore(session_factory, user_id),
            completion=HTTPCompletionClient(
                completion_url,
                http_client,
                api_key=settings.supabase_service_role_key,
                anon_key=settings.supabase_anon_key,
                timeout=settings.completion_timeout,
            ),
            upload_gate=UploadGate(tracker, storage),
            poll_interval=settings.cooldown_poll_interval,
        )

    return build
