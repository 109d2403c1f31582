"""Shared fixtures for workspace-server tests.

Nothing here launches Chrome: the launcher and the Playwright connector are
replaced by the in-memory fakes from ``fakes.py``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fakes import FakeConnector, FakeLauncher
from httpx import ASGITransport, AsyncClient

from devbrowser.workspace_server.app import app
from devbrowser.workspace_server.controller import WorkspaceController
from devbrowser.workspace_server.managers.connections import ConnectionPool
from devbrowser.workspace_server.managers.workspaces import WorkspaceManager
from devbrowser.workspace_server.models.workspace import WorkspaceConfig, WorkspacesConfig
from devbrowser.workspace_server.registry import PageRegistry


@pytest.fixture
def workspaces_config() -> WorkspacesConfig:
    return WorkspacesConfig(
        workspaces={
            "personal": WorkspaceConfig(profile_directory="Default", port=9230),
            "work": WorkspaceConfig(profile_directory="Work", port=9231),
        },
        default_workspace="personal",
    )


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def controller(
    workspaces_config: WorkspacesConfig,
    launcher: FakeLauncher,
    connector: FakeConnector,
) -> WorkspaceController:
    """Fully wired controller on top of the fake launcher and connector."""
    return WorkspaceController(
        config=workspaces_config,
        manager=WorkspaceManager(workspaces_config.workspaces, launcher),  # type: ignore[arg-type]
        launcher=launcher,  # type: ignore[arg-type]
        pool=ConnectionPool(connector=connector),  # type: ignore[arg-type]
        pages=PageRegistry(),
    )


@pytest.fixture
async def client(controller: WorkspaceController) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app.

    The app lifespan does NOT run under ``ASGITransport``, so the controller
    is pre-set on ``app.state``.
    """
    app.state.controller = controller

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.controller = None
