"""Registry of live chat controllers, one per user.

Controllers hold per-user state (transcript, in-flight flag, cooldown timer)
so they are kept in memory between requests and dropped after a period of
inactivity.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..observability import metrics
from .controller import ChatController, ControllerFactory

logger = logging.getLogger(__name__)


@dataclass
class ControllerEntry:
    """A registry entry tracking one user's controller."""
    user_id: uuid.UUID
    controller: ChatController
    created_at: float = field(default_factory=time.monotonic)
    last_access: float = field(default_factory=time.monotonic)


class ControllerRegistry:
    """Creates, caches and expires chat controllers."""

    def __init__(
        self,
        factory: ControllerFactory,
        ttl_seconds: float = 1800,
        reap_interval: float = 60,
    ):
        self.factory = factory
        self.entries: Dict[uuid.UUID, ControllerEntry] = {}
        self.ttl_seconds = ttl_seconds
        self._reap_interval = reap_interval
        self._reaper_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._shutdown = False

    async def get_or_create(self, user_id: uuid.UUID) -> ChatController:
        """Return the user's controller, creating and loading it if needed."""
        async with self._lock:
            entry = self.entries.get(user_id)
            if entry is None:
                entry = ControllerEntry(user_id=user_id, controller=self.factory(user_id))
                self.entries[user_id] = entry
                logger.debug("Created chat controller for user %s", user_id)
                metrics.set_active_controllers(len(self.entries))

                if self._reaper_task is None or self._reaper_task.done():
                    self._reaper_task = asyncio.create_task(self._reaper_loop())
            entry.last_access = time.monotonic()

        try:
            await entry.controller.ensure_loaded()
        except Exception:
            await self.evict(user_id)
            raise
        return entry.controller

    def get(self, user_id: uuid.UUID) -> Optional[ChatController]:
        entry = self.entries.get(user_id)
        if entry is None:
            return None
        entry.last_access = time.monotonic()
        return entry.controller

    async def evict(self, user_id: uuid.UUID):
        entry = self.entries.pop(user_id, None)
        if entry:
            await entry.controller.shutdown()
            metrics.set_active_controllers(len(self.entries))
            logger.debug("Evicted chat controller for user %s", user_id)

    @property
    def active_count(self) -> int:
        return len(self.entries)

    async def reap_expired(self) -> int:
        now = time.monotonic()
        expired = [
            uid for uid, entry in self.entries.items()
            if (now - entry.last_access) >= self.ttl_seconds
            and not entry.controller.is_sending
        ]
        for uid in expired:
            await self.evict(uid)
        return len(expired)

    async def _reaper_loop(self):
        """Background task to drop idle controllers."""
        while not self._shutdown:
            try:
                await asyncio.sleep(self._reap_interval)
                reaped = await self.reap_expired()
                if reaped:
                    logger.debug("Reaped %d idle chat controllers", reaped)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in controller reaper: %s", e)

    async def shutdown(self):
        """Shut down the registry and every controller in it."""
        self._shutdown = True
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
        for entry in list(self.entries.values()):
            await entry.controller.shutdown()
        self.entries.clear()
        metrics.set_active_controllers(0)
