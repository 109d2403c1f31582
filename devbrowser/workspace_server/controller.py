"""Workspace controller -- composes the managers behind the HTTP API.

The controller wires together:

- ``WorkspaceManager``: browser processes and the current-workspace pointer
- ``ConnectionPool``: one Playwright CDP connection per running workspace
- ``PageRegistry``: named pages on top of those connections
- ``ServerLifecycle``: the one-shot shutdown guard

Ownership flows downwards: stopping a workspace purges its pages first, then
drops its connection, then terminates its process.  Server shutdown follows
the same order for everything at once, exactly once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from devbrowser.workspace_server.display import DisplayPlacementResolver
from devbrowser.workspace_server.launcher import ProcessLauncher
from devbrowser.workspace_server.lifecycle import ServerLifecycle
from devbrowser.workspace_server.managers.connections import ConnectionPool
from devbrowser.workspace_server.managers.workspaces import WorkspaceManager
from devbrowser.workspace_server.registry import PageRegistry

if TYPE_CHECKING:
    from playwright.async_api import Browser

    from devbrowser.workspace_server.launcher import ChromeInstance
    from devbrowser.workspace_server.models.workspace import WorkspacesConfig
    from devbrowser.workspace_server.registry import PageEntry
    from devbrowser.workspace_server.settings import DevBrowserSettings


class NoConnectionError(RuntimeError):
    """Raised when the current workspace has no usable browser connection."""


class WorkspaceController:
    def __init__(
        self,
        *,
        config: WorkspacesConfig,
        manager: WorkspaceManager,
        launcher: ProcessLauncher,
        pool: ConnectionPool,
        pages: PageRegistry,
        lifecycle: ServerLifecycle | None = None,
    ) -> None:
        self.config = config
        self.manager = manager
        self.launcher = launcher
        self.pool = pool
        self.pages = pages
        self.lifecycle = lifecycle or ServerLifecycle()

    @classmethod
    def from_settings(cls, settings: DevBrowserSettings, config: WorkspacesConfig) -> WorkspaceController:
        display = DisplayPlacementResolver(settle_delay=settings.display_settle_delay)
        launcher = ProcessLauncher.from_settings(settings, display)
        return cls(
            config=config,
            manager=WorkspaceManager(config.workspaces, launcher, headless=settings.headless),
            launcher=launcher,
            pool=ConnectionPool(),
            pages=PageRegistry(),
        )

    # -- Workspaces ------------------------------------------------------------

    async def switch_workspace(self, name: str) -> ChromeInstance:
        """Make ``name`` current and make sure it has a pooled connection."""
        self.lifecycle.ensure_running()
        instance = await self.manager.switch_workspace(name)
        await self.pool.connection_for(name, instance.ws_endpoint)
        return instance

    async def stop_workspace(self, name: str) -> None:
        """Stop ``name``: its pages, then its connection, then its process."""
        with logger.contextualize(workspace=name):
            await self.pages.purge_workspace(name)
            await self.pool.close_connection(name)
            self.manager.stop_workspace(name)

    def server_info(self) -> tuple[str | None, str | None]:
        """Return ``(current workspace, its CDP endpoint)``."""
        instance = self.manager.current_instance()
        return self.manager.current_workspace, instance.ws_endpoint if instance else None

    # -- Pages -----------------------------------------------------------------

    async def current_connection(self) -> tuple[str, Browser]:
        """Connection of the current workspace, switching to the default one if none is current."""
        current = self.manager.current_workspace
        if current is None:
            current = self.config.default_workspace
            logger.info("No workspace active, switching to default: {}", current)
            await self.switch_workspace(current)

        browser = self.pool.get(current)
        if browser is not None:
            return current, browser

        # The pool drops connections that disconnected; reconnect if the process is tracked.
        instance = self.manager.get_instance(current)
        if instance is None:
            msg = f"No browser connection for workspace: {current}"
            raise NoConnectionError(msg)
        return current, await self.pool.connection_for(current, instance.ws_endpoint)

    async def get_page(self, name: str, viewport: dict[str, int] | None = None) -> tuple[PageEntry, str]:
        """Get or create the named page.  Returns the entry and its workspace's endpoint."""
        self.lifecycle.ensure_running()
        entry = self.pages.get(name)
        if entry is None:
            workspace, browser = await self.current_connection()
            entry = await self.pages.get_or_create(name, browser, workspace, viewport)

        instance = self.manager.get_instance(entry.workspace)
        return entry, instance.ws_endpoint if instance else ""

    async def close_page(self, name: str) -> bool:
        return await self.pages.close(name)

    def list_pages(self) -> list[str]:
        return self.pages.names()

    # -- Shutdown --------------------------------------------------------------

    async def shutdown(self) -> None:
        """Tear everything down once; safe to call from several triggers."""
        await self.lifecycle.shutdown(self._shutdown_sequence)

    async def _shutdown_sequence(self) -> None:
        logger.info(
            "Shutting down workspace server (pages={}, connections={})",
            len(self.pages),
            len(self.pool),
        )

        # 1. Close tracked pages.
        await self.pages.close_all()

        # 2. Disconnect Playwright from every browser.
        await self.pool.close_all()

        # 3. Terminate browser processes, waiting out any forced kills.
        self.manager.stop_all()
        await self.launcher.drain()
        logger.info("Workspace server stopped")
