"""Pooled Playwright connections, one per running workspace.

Connections are made lazily over CDP to the endpoint the launcher reported.
The Playwright driver itself is started on first use and stopped by
``close_all``.  A browser that emits ``disconnected`` (crash, external kill)
is evicted so the next request reconnects instead of reusing a dead handle.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from loguru import logger
from playwright.async_api import async_playwright

if TYPE_CHECKING:
    from playwright.async_api import Browser, Playwright

Connector = Callable[[str], Awaitable["Browser"]]


class ConnectionPool:
    def __init__(self, connector: Connector | None = None) -> None:
        self._connector = connector
        self._playwright: Playwright | None = None
        self._connections: dict[str, Browser] = {}
        self._pending: dict[str, asyncio.Task[Browser]] = {}

    # -- Query -----------------------------------------------------------------

    def get(self, workspace: str) -> Browser | None:
        return self._connections.get(workspace)

    def __contains__(self, workspace: str) -> bool:
        return workspace in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    # -- Connect ---------------------------------------------------------------

    async def connection_for(self, workspace: str, endpoint: str) -> Browser:
        """Return the cached connection for ``workspace`` or connect to ``endpoint``."""
        browser = self._connections.get(workspace)
        if browser is not None:
            return browser

        task = self._pending.get(workspace)
        if task is None:
            task = asyncio.create_task(self._connect(workspace, endpoint))
            self._pending[workspace] = task
            task.add_done_callback(lambda t, w=workspace: self._clear_pending(w, t))
        return await asyncio.shield(task)

    async def _connect(self, workspace: str, endpoint: str) -> Browser:
        logger.info("Connecting Playwright to workspace {} ({})", workspace, endpoint)
        connector = self._connector or self._connect_over_cdp
        browser = await connector(endpoint)
        browser.on("disconnected", lambda _b, w=workspace, b=browser: self._evict(w, b))
        self._connections[workspace] = browser
        return browser

    async def _connect_over_cdp(self, endpoint: str) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.connect_over_cdp(endpoint)

    def _clear_pending(self, workspace: str, task: asyncio.Task[Browser]) -> None:
        if self._pending.get(workspace) is task:
            del self._pending[workspace]
        if not task.cancelled():
            task.exception()

    def _evict(self, workspace: str, browser: Browser) -> None:
        if self._connections.get(workspace) is browser:
            del self._connections[workspace]
            logger.warning("Connection to workspace {} lost", workspace)

    # -- Close -----------------------------------------------------------------

    async def close_connection(self, workspace: str) -> None:
        """Close and evict ``workspace``'s connection.  Best-effort, never raises."""
        browser = self._connections.pop(workspace, None)
        if browser is None:
            return
        try:
            await browser.close()
        except Exception:
            logger.opt(exception=True).debug("Ignoring error closing connection for {}", workspace)

    async def close_all(self) -> None:
        for workspace in list(self._connections):
            await self.close_connection(workspace)

        if self._playwright is not None:
            playwright, self._playwright = self._playwright, None
            try:
                await playwright.stop()
            except Exception:
                logger.opt(exception=True).debug("Ignoring error stopping Playwright")
