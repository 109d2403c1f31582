"""One-shot server lifecycle.

``RUNNING -> SHUTTING_DOWN -> STOPPED``, never backwards.  The shutdown
sequence runs exactly once no matter how many triggers fire (lifespan exit,
SIGHUP, an explicit ``stop`` from tests); later and concurrent callers simply
await the run already in progress.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from devbrowser.workspace_server.models.enums import LifecycleState


class ShuttingDownError(RuntimeError):
    """Raised when a request arrives after shutdown has begun."""


class ServerLifecycle:
    def __init__(self) -> None:
        self._state = LifecycleState.RUNNING
        self._shutdown_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == LifecycleState.RUNNING

    def ensure_running(self) -> None:
        """Raise ``ShuttingDownError`` unless the server still accepts work."""
        if self._state != LifecycleState.RUNNING:
            raise ShuttingDownError

    async def shutdown(self, sequence: Callable[[], Awaitable[None]]) -> None:
        """Run ``sequence`` once; every caller waits for that single run."""
        if self._shutdown_task is None:
            self._state = LifecycleState.SHUTTING_DOWN
            logger.info("Lifecycle: shutdown initiated")
            self._shutdown_task = asyncio.create_task(self._run(sequence))
        await asyncio.shield(self._shutdown_task)

    async def _run(self, sequence: Callable[[], Awaitable[None]]) -> None:
        try:
            await sequence()
        finally:
            self._state = LifecycleState.STOPPED
            logger.info("Lifecycle: stopped")
