"""Chrome process launcher.

Launches real Google Chrome with one isolated ``--user-data-dir`` per
workspace, so several automation instances can run side by side and next to
the user's own browser.  Each instance listens on the workspace's fixed
remote debugging port; the launcher polls ``/json/version`` on that port
until the CDP WebSocket endpoint is available.

Windows are positioned on an off-screen display when one can be resolved
(see ``display.py``), otherwise Chrome runs with ``--headless=new``.

Termination is two-step and never blocks the caller: SIGTERM right away,
SIGKILL from a background task once the grace period expires.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import sys
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from anyio import to_thread
from loguru import logger

if TYPE_CHECKING:
    from devbrowser.workspace_server.display import DisplayPlacementResolver
    from devbrowser.workspace_server.models.workspace import DisplayInfo
    from devbrowser.workspace_server.settings import DevBrowserSettings

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CHROME_PATHS: dict[str, list[str]] = {
    "darwin": [
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
    ],
    "win32": [
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        os.path.join(os.environ.get("LOCALAPPDATA", ""), "Google", "Chrome", "Application", "chrome.exe"),
    ],
    "linux": [
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
    ],
}

DEFAULT_WINDOW_SIZE = (1920, 1080)
CDP_HOST = "127.0.0.1"
CDP_POLL_TIMEOUT = 2.0
"""Per-request timeout for a single ``/json/version`` poll."""

_BACKGROUND_THROTTLING_FLAGS = (
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
)


class LaunchError(RuntimeError):
    """Raised when a browser cannot be started or its CDP endpoint never comes up."""


class _EndpointNotReady(Exception):
    """The introspection endpoint answered, but not with a usable endpoint."""


# ---------------------------------------------------------------------------
# Instance
# ---------------------------------------------------------------------------


@dataclass
class ChromeInstance:
    """A running browser process owned by the workspace manager."""

    workspace: str
    profile_directory: str
    port: int
    process: asyncio.subprocess.Process
    ws_endpoint: str
    headless: bool = False
    observers: list[asyncio.Task] = field(default_factory=list, repr=False)
    """Output/exit observer tasks; held so they are not garbage collected."""

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def is_alive(self) -> bool:
        return self.process.returncode is None


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def find_chrome_executable(platform: str | None = None, exists=os.path.exists) -> str | None:
    """Return the first installed Chrome for ``platform``, or ``None``."""
    for candidate in CHROME_PATHS.get(platform or sys.platform, []):
        if candidate and exists(candidate):
            return candidate
    return None


def build_chrome_args(
    *,
    user_data_dir: Path,
    port: int,
    window_size: tuple[int, int] = DEFAULT_WINDOW_SIZE,
    window_position: tuple[int, int] | None = None,
    headless: bool = False,
) -> list[str]:
    width, height = window_size
    args = [
        f"--user-data-dir={user_data_dir}",
        f"--remote-debugging-port={port}",
        f"--window-size={width},{height}",
        "--no-first-run",
        "--no-default-browser-check",
        *_BACKGROUND_THROTTLING_FLAGS,
    ]
    if window_position is not None:
        args.append(f"--window-position={window_position[0]},{window_position[1]}")
    if headless:
        args.append("--headless=new")

    # Blank start page keeps startup cheap.
    args.append("about:blank")
    return args


async def wait_for_cdp(
    port: int,
    *,
    max_retries: int = 30,
    delay: float = 0.5,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Poll ``/json/version`` until it yields ``webSocketDebuggerUrl``.

    Makes at most ``max_retries`` requests, ``delay`` seconds apart.  Raises
    ``LaunchError`` carrying the last observed error when all of them fail.
    """
    url = f"http://{CDP_HOST}:{port}/json/version"
    last_error: Exception | None = None

    async with httpx.AsyncClient(transport=transport, timeout=CDP_POLL_TIMEOUT) as client:
        for attempt in range(1, max_retries + 1):
            try:
                response = await client.get(url)
                if not response.is_success:
                    msg = f"HTTP {response.status_code}"
                    raise _EndpointNotReady(msg)
                data = response.json()
                endpoint = data.get("webSocketDebuggerUrl") if isinstance(data, dict) else None
                if not endpoint:
                    msg = "response has no webSocketDebuggerUrl"
                    raise _EndpointNotReady(msg)
            except (httpx.HTTPError, ValueError, _EndpointNotReady) as exc:
                last_error = exc
                logger.trace("CDP poll {}/{} on port {} failed: {}", attempt, max_retries, port, exc)
                if attempt < max_retries:
                    await asyncio.sleep(delay)
            else:
                return endpoint

    msg = f"Chrome CDP not available after {max_retries} retries: {last_error}"
    raise LaunchError(msg)


# ---------------------------------------------------------------------------
# Launcher
# ---------------------------------------------------------------------------


class ProcessLauncher:
    """Spawns, observes and terminates Chrome processes."""

    def __init__(
        self,
        *,
        display_resolver: DisplayPlacementResolver,
        data_dir: Path,
        chrome_path: str | None = None,
        window_size: tuple[int, int] = DEFAULT_WINDOW_SIZE,
        max_retries: int = 30,
        retry_delay: float = 0.5,
        kill_grace_period: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._display = display_resolver
        self._data_dir = Path(data_dir)
        self._chrome_path = chrome_path
        self._window_size = window_size
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._kill_grace_period = kill_grace_period
        self._transport = transport
        self._reapers: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: DevBrowserSettings,
        display_resolver: DisplayPlacementResolver,
    ) -> ProcessLauncher:
        return cls(
            display_resolver=display_resolver,
            data_dir=settings.workspaces_data_dir,
            chrome_path=settings.chrome_path,
            window_size=(settings.window_width, settings.window_height),
            max_retries=settings.cdp_max_retries,
            retry_delay=settings.cdp_retry_delay,
            kill_grace_period=settings.kill_grace_period,
        )

    def user_data_dir(self, workspace_name: str) -> Path:
        return self._data_dir / workspace_name

    # -- Launch ----------------------------------------------------------------

    async def launch(
        self,
        workspace_name: str,
        profile_directory: str,
        port: int,
        headless: bool = False,
    ) -> ChromeInstance:
        """Start Chrome for a workspace and wait until its CDP endpoint is reachable."""
        executable = self._chrome_path or find_chrome_executable()
        if not executable:
            msg = f"Chrome executable not found for platform: {sys.platform}"
            raise LaunchError(msg)

        placement = await self._display.resolve()
        effective_headless = headless or placement is None
        window_position = _window_position(placement)

        user_data_dir = self.user_data_dir(workspace_name)
        await to_thread.run_sync(partial(user_data_dir.mkdir, parents=True, exist_ok=True))

        args = build_chrome_args(
            user_data_dir=user_data_dir,
            port=port,
            window_size=self._window_size,
            window_position=window_position,
            headless=effective_headless,
        )

        logger.info("Launching Chrome for workspace {} (profile: {})", workspace_name, profile_directory)
        logger.info("User data dir: {}, CDP port: {}", user_data_dir, port)
        if window_position is not None:
            logger.info("Window position: {} on virtual display", window_position)
        elif effective_headless:
            logger.info("Using headless mode (no virtual display available)")

        try:
            process = await self._spawn(executable, args)
        except OSError as exc:
            msg = f"Failed to start Chrome at {executable}: {exc}"
            raise LaunchError(msg) from exc

        observers = _start_observers(process, profile_directory)

        try:
            ws_endpoint = await wait_for_cdp(
                port,
                max_retries=self._max_retries,
                delay=self._retry_delay,
                transport=self._transport,
            )
        except LaunchError:
            logger.error("Chrome for workspace {} never became ready, terminating", workspace_name)
            self._terminate_process(process, profile_directory)
            raise

        # A Chrome left over from an earlier server run keeps the profile and the
        # port; the one we spawned hands off to it and exits.
        if process.returncode is not None:
            logger.error(
                "Chrome for workspace {} exited (code={}) but port {} still answers",
                workspace_name,
                process.returncode,
                port,
            )
            msg = f"CDP port {port} is served by another process (Chrome for workspace {workspace_name} exited)"
            raise LaunchError(msg)

        logger.info("Chrome ready: {} @ {}", profile_directory, ws_endpoint)
        return ChromeInstance(
            workspace=workspace_name,
            profile_directory=profile_directory,
            port=port,
            process=process,
            ws_endpoint=ws_endpoint,
            headless=effective_headless,
            observers=observers,
        )

    async def _spawn(self, executable: str, args: list[str]) -> asyncio.subprocess.Process:
        # New session: Ctrl+C in the server's terminal must not reach Chrome
        # directly; shutdown goes through terminate().
        return await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )

    # -- Termination -----------------------------------------------------------

    def terminate(self, instance: ChromeInstance) -> None:
        """Send SIGTERM now and SIGKILL after the grace period.  Never blocks."""
        self._terminate_process(instance.process, instance.profile_directory)

    def _terminate_process(self, process: asyncio.subprocess.Process, label: str) -> None:
        if process.returncode is not None:
            return

        logger.info("Stopping Chrome ({})...", label)
        try:
            process.terminate()
        except ProcessLookupError:
            return

        task = asyncio.create_task(self._kill_after_grace(process, label))
        self._reapers.add(task)
        task.add_done_callback(self._reapers.discard)

    async def _kill_after_grace(self, process: asyncio.subprocess.Process, label: str) -> None:
        try:
            await asyncio.wait_for(process.wait(), timeout=self._kill_grace_period)
        except TimeoutError:
            logger.warning("Force killing Chrome ({})...", label)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    @property
    def pending_terminations(self) -> int:
        return len(self._reapers)

    async def drain(self) -> None:
        """Wait for every scheduled termination to complete.  Shutdown only."""
        if self._reapers:
            await asyncio.gather(*list(self._reapers), return_exceptions=True)


# ---------------------------------------------------------------------------
# Observers
# ---------------------------------------------------------------------------


def _window_position(placement: DisplayInfo | None) -> tuple[int, int] | None:
    if placement is None:
        return None
    return placement.origin.x, placement.origin.y


def _start_observers(process: asyncio.subprocess.Process, label: str) -> list[asyncio.Task]:
    tasks = [asyncio.create_task(_watch_exit(process, label))]
    if process.stderr is not None:
        tasks.append(asyncio.create_task(_log_stderr(process.stderr, label)))
    if process.stdout is not None:
        tasks.append(asyncio.create_task(_log_stdout(process.stdout, label)))
    return tasks


async def _read_lines(stream: asyncio.StreamReader, chunk_size: int = 65536) -> AsyncIterator[bytes]:
    # Unlike ``async for`` on the reader, lines past its 64 KiB limit are fine.
    pending = b""
    while chunk := await stream.read(chunk_size):
        pending += chunk
        *lines, pending = pending.split(b"\n")
        for line in lines:
            yield line
    if pending:
        yield pending


async def _log_stderr(stream: asyncio.StreamReader, label: str) -> None:
    async for raw in _read_lines(stream):
        line = raw.decode("utf-8", errors="replace").strip()
        if line and "DevTools listening" not in line:
            logger.warning("[Chrome {}] {}", label, line)


async def _log_stdout(stream: asyncio.StreamReader, label: str) -> None:
    async for raw in _read_lines(stream):
        line = raw.decode("utf-8", errors="replace").strip()
        if line:
            logger.debug("[Chrome {}] {}", label, line)


async def _watch_exit(process: asyncio.subprocess.Process, label: str) -> None:
    code = await process.wait()
    logger.info("Chrome process exited ({}): code={}", label, code)
