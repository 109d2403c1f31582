"""Async client for the workspace server.

Wraps the HTTP control plane and, for ``page()``, attaches Playwright to the
returned CDP endpoint and picks the page by its target id, the only handle
that stays correct when several pages share one browser context::

    async with DevBrowserClient() as client:
        await client.switch("work")
        page = await client.page("inbox")
        await page.goto("https://example.com")

Disconnecting the client never closes the server's pages or browsers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from devbrowser.workspace_server.models.api import (
    CurrentWorkspaceResponse,
    GetPageResponse,
    ListPagesResponse,
    ListWorkspacesResponse,
    StopWorkspaceResponse,
    SwitchWorkspaceResponse,
)
from devbrowser.workspace_server.registry import read_target_id

if TYPE_CHECKING:
    from playwright.async_api import Browser, Page, Playwright

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://127.0.0.1:9222"
DEFAULT_TIMEOUT = 60.0
"""Generous because a first switch waits for Chrome to start."""


class DevBrowserAPIError(RuntimeError):
    """Non-2xx response from the workspace server."""

    def __init__(self, status_code: int, detail: Any) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


async def find_page_by_target_id(browser: Browser, target_id: str) -> Page | None:
    for context in browser.contexts:
        for page in context.pages:
            try:
                if await read_target_id(page) == target_id:
                    return page
            except PlaywrightError:
                continue
    return None


class DevBrowserClient:
    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._playwright: Playwright | None = None
        self._browsers: dict[str, Browser] = {}

    async def __aenter__(self) -> DevBrowserClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Drop Playwright connections and the HTTP client.  Server state is untouched."""
        for browser in self._browsers.values():
            try:
                await browser.close()
            except PlaywrightError:
                logger.debug("Ignoring error while disconnecting", exc_info=True)
        self._browsers.clear()
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        await self._http.aclose()

    # -- HTTP ------------------------------------------------------------------

    async def _request(self, method: str, path: str, body: dict | None = None) -> Any:
        response = await self._http.request(method, path, json=body)
        if response.is_error:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise DevBrowserAPIError(response.status_code, detail)
        return response.json()

    async def workspaces(self) -> ListWorkspacesResponse:
        return ListWorkspacesResponse.model_validate(await self._request("GET", "/workspaces"))

    async def current(self) -> CurrentWorkspaceResponse:
        return CurrentWorkspaceResponse.model_validate(await self._request("GET", "/workspace/current"))

    async def switch(self, workspace: str) -> SwitchWorkspaceResponse:
        data = await self._request("POST", "/workspace/switch", {"workspace": workspace})
        return SwitchWorkspaceResponse.model_validate(data)

    async def stop(self, workspace: str) -> StopWorkspaceResponse:
        data = await self._request("POST", "/workspace/stop", {"workspace": workspace})
        return StopWorkspaceResponse.model_validate(data)

    async def list_pages(self) -> list[str]:
        return ListPagesResponse.model_validate(await self._request("GET", "/pages")).pages

    async def get_page(self, name: str, viewport: dict[str, int] | None = None) -> GetPageResponse:
        body: dict[str, Any] = {"name": name}
        if viewport is not None:
            body["viewport"] = viewport
        return GetPageResponse.model_validate(await self._request("POST", "/pages", body))

    async def close_page(self, name: str) -> None:
        await self._request("DELETE", f"/pages/{quote(name, safe='')}")

    # -- Playwright ------------------------------------------------------------

    async def page(self, name: str, viewport: dict[str, int] | None = None) -> Page:
        """Get or create ``name`` on the server and return it as a Playwright page."""
        info = await self.get_page(name, viewport)
        browser = await self._browser(info.ws_endpoint)
        page = await find_page_by_target_id(browser, info.target_id)
        if page is None:
            msg = f"Page '{name}' (target {info.target_id}) not found at {info.ws_endpoint}"
            raise LookupError(msg)
        return page

    async def _browser(self, ws_endpoint: str) -> Browser:
        browser = self._browsers.get(ws_endpoint)
        if browser is not None and browser.is_connected():
            return browser

        if self._playwright is None:
            self._playwright = await async_playwright().start()
        logger.info("Connecting to %s", ws_endpoint)
        browser = await self._playwright.chromium.connect_over_cdp(ws_endpoint)
        self._browsers[ws_endpoint] = browser
        return browser
