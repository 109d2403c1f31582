"""Unit tests for the Chrome launcher: args, CDP polling, launch and termination."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest
from fakes import FakeProcess
from loguru import logger

from devbrowser.workspace_server.display import DisplayCommandError, DisplayPlacementResolver
from devbrowser.workspace_server.launcher import (
    LaunchError,
    ProcessLauncher,
    _log_stderr,
    build_chrome_args,
    find_chrome_executable,
    wait_for_cdp,
)
from devbrowser.workspace_server.models.workspace import DisplayInfo, Point, Size

WS_ENDPOINT = "ws://127.0.0.1:9230/devtools/browser/abc-123"


def _cdp_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"Browser": "Chrome/126", "webSocketDebuggerUrl": WS_ENDPOINT})


class StaticDisplay:
    def __init__(self, placement: DisplayInfo | None) -> None:
        self.placement = placement

    async def resolve(self) -> DisplayInfo | None:
        return self.placement


def _launcher(tmp_path: Path, display, handler=_cdp_ok, *, max_retries: int = 3, **kwargs) -> ProcessLauncher:
    return ProcessLauncher(
        display_resolver=display,
        data_dir=tmp_path / "workspaces",
        chrome_path="/opt/chrome/chrome",
        max_retries=max_retries,
        retry_delay=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_find_chrome_executable_takes_first_existing() -> None:
    found = find_chrome_executable("linux", exists=lambda p: p.endswith("chromium"))
    assert found == "/usr/bin/chromium"


def test_find_chrome_executable_none_when_missing() -> None:
    assert find_chrome_executable("linux", exists=lambda p: False) is None
    assert find_chrome_executable("plan9", exists=lambda p: True) is None


def test_build_args_windowed() -> None:
    args = build_chrome_args(
        user_data_dir=Path("/data/work"),
        port=9231,
        window_size=(1280, 800),
        window_position=(1512, 0),
    )
    assert args[0] == "--user-data-dir=/data/work"
    assert "--remote-debugging-port=9231" in args
    assert "--window-size=1280,800" in args
    assert "--window-position=1512,0" in args
    assert "--no-first-run" in args
    assert "--headless=new" not in args
    assert args[-1] == "about:blank"


def test_build_args_headless() -> None:
    args = build_chrome_args(user_data_dir=Path("/data/p"), port=9230, headless=True)
    assert "--headless=new" in args
    assert not any(a.startswith("--window-position") for a in args)
    assert args[-1] == "about:blank"


# ---------------------------------------------------------------------------
# CDP polling
# ---------------------------------------------------------------------------


async def test_wait_for_cdp_returns_endpoint() -> None:
    assert await wait_for_cdp(9230, delay=0, transport=httpx.MockTransport(_cdp_ok)) == WS_ENDPOINT


async def test_wait_for_cdp_retries_until_ready() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return _cdp_ok(request)

    endpoint = await wait_for_cdp(9230, max_retries=5, delay=0, transport=httpx.MockTransport(handler))

    assert endpoint == WS_ENDPOINT
    assert calls == ["/json/version"] * 3


async def test_wait_for_cdp_gives_up_after_exactly_max_retries() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError(f"refused #{len(calls)}", request=request)

    with pytest.raises(LaunchError, match=r"not available after 4 retries: refused #4"):
        await wait_for_cdp(9230, max_retries=4, delay=0, transport=httpx.MockTransport(handler))
    assert len(calls) == 4


@pytest.mark.parametrize(
    "response_kwargs",
    [
        {"status_code": 500, "text": "starting"},
        {"status_code": 200, "text": "not json"},
        {"status_code": 200, "json": {"Browser": "Chrome/126"}},
    ],
)
async def test_wait_for_cdp_unusable_responses_count_as_failures(response_kwargs: dict) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(**response_kwargs))
    with pytest.raises(LaunchError, match="after 2 retries"):
        await wait_for_cdp(9230, max_retries=2, delay=0, transport=transport)


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


async def test_launch_headless_when_display_unavailable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def no_displayplacer(argv):
        raise DisplayCommandError("displayplacer exited with status 1")

    display = DisplayPlacementResolver(platform="darwin", runner=no_displayplacer)
    launcher = _launcher(tmp_path, display)
    spawned: list[tuple[str, list[str]]] = []
    process = FakeProcess()

    async def fake_spawn(executable: str, args: list[str]) -> FakeProcess:
        spawned.append((executable, args))
        return process

    monkeypatch.setattr(launcher, "_spawn", fake_spawn)

    instance = await launcher.launch("personal", "Default", 9230)

    assert instance.ws_endpoint == WS_ENDPOINT
    assert instance.headless is True
    assert instance.pid == process.pid
    executable, args = spawned[0]
    assert executable == "/opt/chrome/chrome"
    assert "--headless=new" in args
    assert f"--user-data-dir={tmp_path / 'workspaces' / 'personal'}" in args
    assert (tmp_path / "workspaces" / "personal").is_dir()

    launcher.terminate(instance)
    await launcher.drain()


async def test_launch_positions_window_on_offscreen_display(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    display = StaticDisplay(DisplayInfo(origin=Point(x=1512, y=0), resolution=Size(width=1920, height=1080)))
    launcher = _launcher(tmp_path, display)
    spawned: list[list[str]] = []

    async def fake_spawn(executable: str, args: list[str]) -> FakeProcess:
        spawned.append(args)
        return FakeProcess()

    monkeypatch.setattr(launcher, "_spawn", fake_spawn)

    instance = await launcher.launch("work", "Work", 9231)

    assert instance.headless is False
    assert "--window-position=1512,0" in spawned[0]
    assert "--headless=new" not in spawned[0]

    launcher.terminate(instance)
    await launcher.drain()


async def test_launch_headless_flag_overrides_display(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    display = StaticDisplay(DisplayInfo(origin=Point(x=1512, y=0), resolution=Size(width=1920, height=1080)))
    launcher = _launcher(tmp_path, display)

    async def fake_spawn(executable: str, args: list[str]) -> FakeProcess:
        assert "--headless=new" in args
        return FakeProcess()

    monkeypatch.setattr(launcher, "_spawn", fake_spawn)

    instance = await launcher.launch("work", "Work", 9231, headless=True)
    assert instance.headless is True

    launcher.terminate(instance)
    await launcher.drain()


async def test_launch_never_ready_terminates_process(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    launcher = _launcher(tmp_path, StaticDisplay(None), handler=lambda request: httpx.Response(503))
    process = FakeProcess()

    async def fake_spawn(executable: str, args: list[str]) -> FakeProcess:
        return process

    monkeypatch.setattr(launcher, "_spawn", fake_spawn)

    with pytest.raises(LaunchError, match="not available after 3 retries"):
        await launcher.launch("personal", "Default", 9230)

    await launcher.drain()
    assert process.signals == ["SIGTERM"]
    assert process.returncode is not None


async def test_launch_without_executable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("devbrowser.workspace_server.launcher.find_chrome_executable", lambda: None)
    launcher = ProcessLauncher(display_resolver=StaticDisplay(None), data_dir=tmp_path)

    with pytest.raises(LaunchError, match="Chrome executable not found"):
        await launcher.launch("personal", "Default", 9230)


async def test_launch_spawn_failure_is_launch_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    launcher = _launcher(tmp_path, StaticDisplay(None))

    async def fake_spawn(executable: str, args: list[str]) -> FakeProcess:
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(launcher, "_spawn", fake_spawn)

    with pytest.raises(LaunchError, match="Failed to start Chrome"):
        await launcher.launch("personal", "Default", 9230)


async def test_display_failure_is_shared_across_launches(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    queries: list[tuple[str, ...]] = []

    async def no_displayplacer(argv):
        queries.append(tuple(argv))
        raise FileNotFoundError(argv[0])

    display = DisplayPlacementResolver(platform="darwin", settle_delay=0, runner=no_displayplacer)
    launcher = _launcher(tmp_path, display)
    spawned: list[list[str]] = []

    async def fake_spawn(executable: str, args: list[str]) -> FakeProcess:
        spawned.append(args)
        return FakeProcess()

    monkeypatch.setattr(launcher, "_spawn", fake_spawn)

    personal = await launcher.launch("personal", "Default", 9230)
    queried = len(queries)
    work = await launcher.launch("work", "Work", 9231)

    assert personal.headless is True
    assert work.headless is True
    assert all("--headless=new" in args for args in spawned)
    assert len(queries) == queried

    launcher.terminate(personal)
    launcher.terminate(work)
    await launcher.drain()


async def test_launch_fails_when_port_belongs_to_surviving_browser(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    launcher = _launcher(tmp_path, StaticDisplay(None))
    # Handed off to the Chrome already holding this profile, then exited.
    process = FakeProcess()
    process.exit(0)

    async def fake_spawn(executable: str, args: list[str]) -> FakeProcess:
        return process

    monkeypatch.setattr(launcher, "_spawn", fake_spawn)

    with pytest.raises(LaunchError, match="port 9230 is served by another process"):
        await launcher.launch("personal", "Default", 9230)
    assert launcher.pending_terminations == 0


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------


async def test_terminate_escalates_to_kill_after_grace(tmp_path: Path) -> None:
    launcher = _launcher(tmp_path, StaticDisplay(None), kill_grace_period=0.01)
    stubborn = FakeProcess(exits_on_terminate=False)

    launcher._terminate_process(stubborn, "Default")  # type: ignore[arg-type]

    # Returns immediately; the kill happens in the background.
    assert stubborn.signals == ["SIGTERM"]
    assert launcher.pending_terminations == 1

    await launcher.drain()
    assert stubborn.signals == ["SIGTERM", "SIGKILL"]
    assert stubborn.returncode == -9
    assert launcher.pending_terminations == 0


async def test_terminate_cooperative_process_is_not_killed(tmp_path: Path) -> None:
    launcher = _launcher(tmp_path, StaticDisplay(None), kill_grace_period=5)
    process = FakeProcess()

    launcher._terminate_process(process, "Default")  # type: ignore[arg-type]
    await launcher.drain()

    assert process.signals == ["SIGTERM"]


async def test_terminate_exited_process_is_noop(tmp_path: Path) -> None:
    launcher = _launcher(tmp_path, StaticDisplay(None))
    process = FakeProcess()
    process.exit(0)

    launcher._terminate_process(process, "Default")  # type: ignore[arg-type]

    assert process.signals == []
    assert launcher.pending_terminations == 0


# ---------------------------------------------------------------------------
# Output observers
# ---------------------------------------------------------------------------


async def test_stderr_observer_survives_oversized_line() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b"x" * 70000 + b"\nafter\n")
    reader.feed_eof()
    messages: list[str] = []
    sink_id = logger.add(messages.append, format="{message}", level="WARNING")
    try:
        await _log_stderr(reader, "Default")
    finally:
        logger.remove(sink_id)

    assert len(messages) == 2
    assert messages[0].strip() == "[Chrome Default] " + "x" * 70000
    assert messages[1].strip() == "[Chrome Default] after"
    assert reader.at_eof()


async def test_stderr_observer_skips_devtools_banner_and_flushes_tail() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b"DevTools listening on ws://127.0.0.1:9230/devtools/browser/x\n\npartial")
    reader.feed_eof()
    messages: list[str] = []
    sink_id = logger.add(messages.append, format="{message}", level="WARNING")
    try:
        await _log_stderr(reader, "Work")
    finally:
        logger.remove(sink_id)

    assert [m.strip() for m in messages] == ["[Chrome Work] partial"]
