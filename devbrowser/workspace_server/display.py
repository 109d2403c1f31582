"""Off-screen display placement for automated browser windows.

Headless Chrome is detected (and blocked) by some sign-in flows, so on macOS
windows are instead placed on a BetterDisplay virtual screen that sits next
to the real monitors and is never looked at.

Detection uses ``displayplacer list``, whose output is a sequence of
records, one per screen::

    Persistent screen id: 37D8832A-2D66-02CA-B9F7-8F30A301B230
    Contextual screen id: 1
    Type: MacBook built in screen
    Resolution: 1512x982
    Origin: (0,0) - main display
    ...

The first non-built-in screen with a strictly positive x origin is taken as
the placement target.  If none exists a virtual screen is created once with
``betterdisplaycli`` and detection is retried.

Resolve-once policy: the first resolution, successful or not, is cached on
the resolver and reused for every later launch.  Call ``refresh`` to force
a re-query; nothing does so automatically.
"""

from __future__ import annotations

import asyncio
import re
import sys
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from loguru import logger

from devbrowser.workspace_server.models.workspace import DisplayInfo, Point, Size

VIRTUAL_DISPLAY_NAME = "DevBrowser"
BUILT_IN_SCREEN_TYPE = "MacBook built in screen"

LIST_DISPLAYS_COMMAND = ("displayplacer", "list")
CREATE_DISPLAY_COMMAND = (
    "betterdisplaycli",
    "create",
    "-type=VirtualScreen",
    f"-virtualScreenName={VIRTUAL_DISPLAY_NAME}",
    "-aspectWidth=1920",
    "-aspectHeight=1080",
    "-connected=on",
)

_ORIGIN_RE = re.compile(r"\((-?\d+),(-?\d+)\)")
_RESOLUTION_RE = re.compile(r"(\d+)x(\d+)")

CommandRunner = Callable[[Sequence[str]], Awaitable[str]]


class DisplayCommandError(RuntimeError):
    """An OS display utility exited with a non-zero status."""


async def run_command(argv: Sequence[str]) -> str:
    """Run a utility and return its stdout.  Raises on non-zero exit."""
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    stdout, _ = await proc.communicate()
    if proc.returncode != 0:
        msg = f"{argv[0]} exited with status {proc.returncode}"
        raise DisplayCommandError(msg)
    return stdout.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass
class ScreenRecord:
    type: str | None = None
    origin: str | None = None
    resolution: str | None = None

    @property
    def complete(self) -> bool:
        return bool(self.type and self.origin and self.resolution)


def parse_screens(output: str) -> list[ScreenRecord]:
    """Split ``displayplacer list`` output into complete screen records."""
    screens: list[ScreenRecord] = []
    current = ScreenRecord()

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if line.startswith("Persistent screen id:"):
            if current.complete:
                screens.append(current)
            current = ScreenRecord()
        elif line.startswith("Type:"):
            current.type = line.removeprefix("Type:").strip()
        elif line.startswith("Origin:"):
            # "Origin: (1512,0) - main display" -> "(1512,0)"
            value = line.removeprefix("Origin:").strip()
            current.origin = value.split(" ")[0] if value else None
        elif line.startswith("Resolution:"):
            current.resolution = line.removeprefix("Resolution:").strip()

    if current.complete:
        screens.append(current)
    return screens


def select_offscreen_display(screens: Sequence[ScreenRecord]) -> DisplayInfo | None:
    """Pick the first non-built-in screen positioned to the right of the main display."""
    for screen in screens:
        if screen.type == BUILT_IN_SCREEN_TYPE:
            continue

        origin = _ORIGIN_RE.search(screen.origin or "")
        resolution = _RESOLUTION_RE.search(screen.resolution or "")
        if origin is None or resolution is None:
            continue

        x, y = int(origin.group(1)), int(origin.group(2))
        if x > 0:
            return DisplayInfo(
                origin=Point(x=x, y=y),
                resolution=Size(width=int(resolution.group(1)), height=int(resolution.group(2))),
            )
    return None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class DisplayPlacementResolver:
    """Finds (or creates) an off-screen display, once per resolver lifetime."""

    _UNRESOLVED = object()

    def __init__(
        self,
        *,
        settle_delay: float = 1.0,
        platform: str | None = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self._settle_delay = settle_delay
        self._platform = platform or sys.platform
        self._runner = runner
        self._cached: DisplayInfo | None | object = self._UNRESOLVED
        self._lock = asyncio.Lock()

    @property
    def is_resolved(self) -> bool:
        return self._cached is not self._UNRESOLVED

    async def resolve(self) -> DisplayInfo | None:
        """Return the cached placement, resolving it on first use."""
        async with self._lock:
            if self._cached is self._UNRESOLVED:
                self._cached = await self._ensure_virtual_display()
            return self._cached  # type: ignore[return-value]

    def refresh(self) -> None:
        """Drop the cached placement; the next ``resolve`` queries the OS again."""
        self._cached = self._UNRESOLVED

    async def _ensure_virtual_display(self) -> DisplayInfo | None:
        if self._platform != "darwin":
            return None

        display = await self._detect()
        if display is not None:
            return display

        try:
            logger.info("Creating BetterDisplay virtual screen '{}'", VIRTUAL_DISPLAY_NAME)
            await self._runner(CREATE_DISPLAY_COMMAND)
        except (OSError, DisplayCommandError) as exc:
            logger.info("Could not create virtual display ({}), will use headless mode", exc)
            return None

        await asyncio.sleep(self._settle_delay)

        display = await self._detect()
        if display is not None:
            logger.info("Virtual display created successfully")
        return display

    async def _detect(self) -> DisplayInfo | None:
        try:
            output = await self._runner(LIST_DISPLAYS_COMMAND)
        except (OSError, DisplayCommandError) as exc:
            logger.info("Could not query displays ({}), will use headless mode", exc)
            return None

        display = select_offscreen_display(parse_screens(output))
        if display is None:
            logger.info("No virtual display found")
        else:
            logger.info(
                "Found virtual display at origin ({},{}) with resolution {}x{}",
                display.origin.x,
                display.origin.y,
                display.resolution.width,
                display.resolution.height,
            )
        return display
