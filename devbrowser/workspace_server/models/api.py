"""API request / response schemas for the control-plane endpoints.

These thin schemas sit between HTTP and the controller.  All of them use
camelCase on the wire (``wsEndpoint``, ``targetId``) to stay compatible with
existing dev-browser clients; Python code uses the snake_case attributes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from devbrowser.workspace_server.models.workspace import CamelModel, WorkspaceState

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class ServerInfoResponse(CamelModel):
    ws_endpoint: str | None = None
    workspace: str | None = None
    mode: Literal["workspaces"] = "workspaces"


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


class WorkspaceRequest(CamelModel):
    """Body of ``/workspace/switch`` and ``/workspace/stop``."""

    workspace: str = Field(min_length=1)


class ListWorkspacesResponse(CamelModel):
    workspaces: list[WorkspaceState]
    current: str | None = None


class CurrentWorkspaceResponse(CamelModel):
    workspace: str | None = None
    ws_endpoint: str | None = None


class SwitchWorkspaceResponse(CamelModel):
    workspace: str
    ws_endpoint: str
    status: Literal["running"] = "running"


class StopWorkspaceResponse(CamelModel):
    success: bool = True
    workspace: str


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


class ViewportSize(CamelModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class GetPageRequest(CamelModel):
    name: str = Field(min_length=1)
    viewport: ViewportSize | None = None


class GetPageResponse(CamelModel):
    ws_endpoint: str
    name: str
    target_id: str = Field(description="CDP target id; the durable handle for page matching.")


class ListPagesResponse(CamelModel):
    pages: list[str]


class SuccessResponse(CamelModel):
    success: bool = True
