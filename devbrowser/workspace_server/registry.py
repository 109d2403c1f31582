"""In-process registry of named pages.

Maps logical page names to live Playwright pages.  Ephemeral (empty on
server restart) but recoverable: every page created here lives in its own
browser context whose init script writes the page name into
``globalThis.__devBrowserPageName``.  On a lookup miss the registry scans the
pages of the connection and adopts any page carrying the requested name, so
pages survive a server restart as long as the browser process kept running.

The registry references pages only.  Connections belong to the
``ConnectionPool`` and processes to the ``WorkspaceManager``; the registry
never closes either.

Names are global: one name maps to one page regardless of which workspace
owns it.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger
from playwright.async_api import Error as PlaywrightError

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page

PAGE_NAME_GLOBAL = "__devBrowserPageName"
READ_PAGE_NAME_SCRIPT = f"() => globalThis.{PAGE_NAME_GLOBAL}"


def page_name_init_script(name: str) -> str:
    """Init script that tags every page of a context with ``name``."""
    return f"globalThis.{PAGE_NAME_GLOBAL} = {json.dumps(name)};"


async def read_target_id(page: Page) -> str:
    """Return the CDP target id of ``page``."""
    session = await page.context.new_cdp_session(page)
    try:
        info = await session.send("Target.getTargetInfo")
    finally:
        await session.detach()
    return info["targetInfo"]["targetId"]


@dataclass
class PageEntry:
    """One named page."""

    name: str
    page: Page
    target_id: str
    """CDP target id, the durable handle external clients match pages by."""
    workspace: str
    owns_context: bool = True


class PageRegistry:
    """Name -> page map, reconciled against live browser state on a miss."""

    def __init__(self) -> None:
        self._entries: dict[str, PageEntry] = {}
        self._pending: dict[str, asyncio.Task[PageEntry]] = {}
        self._closers: set[asyncio.Task] = set()

    # -- Query -----------------------------------------------------------------

    def get(self, name: str) -> PageEntry | None:
        return self._entries.get(name)

    def names(self) -> list[str]:
        return list(self._entries)

    def for_workspace(self, workspace: str) -> list[PageEntry]:
        return [e for e in self._entries.values() if e.workspace == workspace]

    def __len__(self) -> int:
        return len(self._entries)

    # -- Get or create ---------------------------------------------------------

    async def get_or_create(
        self,
        name: str,
        connection: Browser,
        workspace: str,
        viewport: dict[str, int] | None = None,
    ) -> PageEntry:
        """Return the page registered as ``name``, adopting or creating it on a miss."""
        entry = self._entries.get(name)
        if entry is not None:
            return entry

        task = self._pending.get(name)
        if task is None:
            task = asyncio.create_task(self._resolve(name, connection, workspace, viewport))
            self._pending[name] = task
            task.add_done_callback(lambda t, n=name: self._clear_pending(n, t))
        return await asyncio.shield(task)

    async def _resolve(
        self,
        name: str,
        connection: Browser,
        workspace: str,
        viewport: dict[str, int] | None,
    ) -> PageEntry:
        page = await self._find_marked_page(name, connection)
        if page is not None:
            logger.info("Page {}: recovered existing page in workspace {}", name, workspace)
            return await self._register(name, page, workspace, owns_context=False)

        context = await connection.new_context(viewport=viewport) if viewport else await connection.new_context()
        await context.add_init_script(script=page_name_init_script(name))
        page = await context.new_page()
        logger.info("Page {}: created in workspace {}", name, workspace)
        return await self._register(name, page, workspace, owns_context=True)

    async def _find_marked_page(self, name: str, connection: Browser) -> Page | None:
        for context in connection.contexts:
            for page in context.pages:
                try:
                    marker = await page.evaluate(READ_PAGE_NAME_SCRIPT)
                except PlaywrightError:
                    # Closed or mid-navigation.
                    continue
                if marker == name:
                    return page
        return None

    async def _register(self, name: str, page: Page, workspace: str, *, owns_context: bool) -> PageEntry:
        target_id = await read_target_id(page)
        entry = PageEntry(
            name=name,
            page=page,
            target_id=target_id,
            workspace=workspace,
            owns_context=owns_context,
        )
        self._entries[name] = entry
        page.once("close", lambda p, n=name: self._on_page_closed(n, p))
        return entry

    def _on_page_closed(self, name: str, page: Page) -> None:
        entry = self._entries.get(name)
        if entry is None or entry.page is not page:
            return
        del self._entries[name]
        logger.debug("Page {}: closed, unregistered", name)
        if entry.owns_context:
            task = asyncio.create_task(_close_context_if_empty(page.context, name))
            self._closers.add(task)
            task.add_done_callback(self._closers.discard)

    def _clear_pending(self, name: str, task: asyncio.Task[PageEntry]) -> None:
        if self._pending.get(name) is task:
            del self._pending[name]
        if not task.cancelled():
            task.exception()

    # -- Close -----------------------------------------------------------------

    async def close(self, name: str) -> bool:
        """Close and unregister ``name``.  Returns ``False`` if it was not registered."""
        entry = self._entries.pop(name, None)
        if entry is None:
            return False
        await _close_entry(entry)
        logger.info("Page {}: closed", name)
        return True

    async def purge_workspace(self, workspace: str) -> list[str]:
        """Unregister every page owned by ``workspace``, closing them best-effort."""
        entries = self.for_workspace(workspace)
        for entry in entries:
            del self._entries[entry.name]
        for entry in entries:
            await _close_entry_quietly(entry)
        if entries:
            logger.info("Purged {} page(s) of workspace {}", len(entries), workspace)
        return [e.name for e in entries]

    async def close_all(self) -> None:
        entries, self._entries = list(self._entries.values()), {}
        for entry in entries:
            await _close_entry_quietly(entry)
        if self._closers:
            await asyncio.gather(*list(self._closers), return_exceptions=True)


async def _close_entry(entry: PageEntry) -> None:
    context: BrowserContext = entry.page.context
    await entry.page.close()
    if entry.owns_context and not context.pages:
        await context.close()


async def _close_entry_quietly(entry: PageEntry) -> None:
    try:
        await _close_entry(entry)
    except PlaywrightError:
        logger.opt(exception=True).debug("Ignoring error closing page {}", entry.name)


async def _close_context_if_empty(context: BrowserContext, name: str) -> None:
    if context.pages:
        return
    try:
        await context.close()
    except PlaywrightError:
        logger.opt(exception=True).debug("Ignoring error closing context of page {}", name)
    else:
        logger.debug("Page {}: closed its context", name)
