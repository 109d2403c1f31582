"""In-memory stand-ins for Chrome processes and Playwright objects.

Only the surface the workspace server touches is implemented.  Init scripts
are "executed" by parsing the page-name assignment that ``PageRegistry``
installs, so marker recovery can be exercised without a browser.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections import defaultdict
from collections.abc import Callable

from playwright.async_api import Error as PlaywrightError

from devbrowser.workspace_server.launcher import ChromeInstance, LaunchError

_pids = itertools.count(4000)
_targets = itertools.count(1)


def next_target_id() -> str:
    return f"TARGET-{next(_targets):04d}"


# ---------------------------------------------------------------------------
# Processes
# ---------------------------------------------------------------------------


class FakeProcess:
    """Looks like ``asyncio.subprocess.Process`` without pipes."""

    def __init__(self, *, exits_on_terminate: bool = True) -> None:
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.stdout = None
        self.stderr = None
        self.signals: list[str] = []
        self._exits_on_terminate = exits_on_terminate
        self._exited = asyncio.Event()

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if self._exits_on_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self.exit(-9)

    def exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode  # type: ignore[return-value]


class FakeLauncher:
    """Records launches and terminations; optionally blocks or fails launches."""

    def __init__(self) -> None:
        self.launches: list[tuple[str, str, int, bool]] = []
        self.terminated: list[ChromeInstance] = []
        self.drained = 0
        self.gate: asyncio.Event | None = None
        self.fail_with: Exception | None = None

    async def launch(
        self,
        workspace_name: str,
        profile_directory: str,
        port: int,
        headless: bool = False,
    ) -> ChromeInstance:
        self.launches.append((workspace_name, profile_directory, port, headless))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return ChromeInstance(
            workspace=workspace_name,
            profile_directory=profile_directory,
            port=port,
            process=FakeProcess(),  # type: ignore[arg-type]
            ws_endpoint=f"ws://127.0.0.1:{port}/devtools/browser/{workspace_name}-{len(self.launches)}",
            headless=headless,
        )

    def terminate(self, instance: ChromeInstance) -> None:
        self.terminated.append(instance)
        instance.process.terminate()

    async def drain(self) -> None:
        self.drained += 1


def failing_launch(message: str = "Chrome CDP not available after 30 retries: boom") -> LaunchError:
    return LaunchError(message)


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------


class _Emitter:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable]] = defaultdict(list)

    def on(self, event: str, callback: Callable) -> None:
        self._listeners[event].append(callback)

    def once(self, event: str, callback: Callable) -> None:
        self._listeners[event].append(callback)

    def emit(self, event: str, payload: object) -> None:
        for callback in self._listeners.pop(event, []):
            callback(payload)


class FakeCDPSession:
    def __init__(self, target_id: str) -> None:
        self._target_id = target_id
        self.detached = False

    async def send(self, method: str, params: dict | None = None) -> dict:
        assert method == "Target.getTargetInfo"
        return {"targetInfo": {"targetId": self._target_id, "type": "page"}}

    async def detach(self) -> None:
        self.detached = True


class FakePage(_Emitter):
    def __init__(self, context: FakeContext, *, marker: str | None = None) -> None:
        super().__init__()
        self.context = context
        self.target_id = next_target_id()
        self.marker = marker
        self.evaluate_error: str | None = None
        self.closed = False

    async def evaluate(self, script: str) -> object:
        if self.closed:
            msg = "Target page, context or browser has been closed"
            raise PlaywrightError(msg)
        if self.evaluate_error is not None:
            raise PlaywrightError(self.evaluate_error)
        return self.marker

    def is_closed(self) -> bool:
        return self.closed

    async def close(self) -> None:
        if self.closed:
            return
        if self.context.browser.closed:
            msg = "Target page, context or browser has been closed"
            raise PlaywrightError(msg)
        self.closed = True
        self.context.pages.remove(self)
        self.emit("close", self)


class FakeContext:
    def __init__(self, browser: FakeBrowser, *, viewport: dict | None = None) -> None:
        self.browser = browser
        self.viewport = viewport
        self.pages: list[FakePage] = []
        self.init_scripts: list[str] = []
        self.closed = False

    async def add_init_script(self, script: str | None = None, path: str | None = None) -> None:
        self.init_scripts.append(script or "")

    async def new_page(self) -> FakePage:
        page = FakePage(self, marker=self._marker())
        self.pages.append(page)
        return page

    def add_existing_page(self, marker: str | None = None) -> FakePage:
        page = FakePage(self, marker=marker)
        self.pages.append(page)
        return page

    async def new_cdp_session(self, page: FakePage) -> FakeCDPSession:
        return FakeCDPSession(page.target_id)

    async def close(self) -> None:
        for page in list(self.pages):
            await page.close()
        self.closed = True
        if self in self.browser.contexts:
            self.browser.contexts.remove(self)

    def _marker(self) -> str | None:
        # Parses: globalThis.__devBrowserPageName = "name";
        for script in self.init_scripts:
            if "__devBrowserPageName" in script:
                return json.loads(script.split("=", 1)[1].strip().rstrip(";"))
        return None


class FakeBrowser(_Emitter):
    def __init__(self, endpoint: str = "") -> None:
        super().__init__()
        self.endpoint = endpoint
        self.contexts: list[FakeContext] = [FakeContext(self)]
        self.closed = False
        self.close_error: Exception | None = None

    async def new_context(self, viewport: dict | None = None) -> FakeContext:
        context = FakeContext(self, viewport=viewport)
        self.contexts.append(context)
        return context

    def is_connected(self) -> bool:
        return not self.closed

    async def close(self) -> None:
        if self.close_error is not None:
            raise self.close_error
        self.closed = True
        self.emit("disconnected", self)


class FakeConnector:
    """``ConnectionPool`` connector that hands out ``FakeBrowser`` objects."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.browsers: dict[str, FakeBrowser] = {}

    async def __call__(self, endpoint: str) -> FakeBrowser:
        self.calls.append(endpoint)
        await asyncio.sleep(0)
        browser = FakeBrowser(endpoint)
        self.browsers[endpoint] = browser
        return browser
