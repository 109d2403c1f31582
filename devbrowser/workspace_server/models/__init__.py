"""Data models for the workspace server."""

from devbrowser.workspace_server.models.api import (
    CurrentWorkspaceResponse,
    GetPageRequest,
    GetPageResponse,
    ListPagesResponse,
    ListWorkspacesResponse,
    ServerInfoResponse,
    StopWorkspaceResponse,
    SuccessResponse,
    SwitchWorkspaceResponse,
    ViewportSize,
    WorkspaceRequest,
)
from devbrowser.workspace_server.models.enums import LifecycleState, WorkspaceStatus
from devbrowser.workspace_server.models.workspace import (
    DEFAULT_WORKSPACES_CONFIG,
    DisplayInfo,
    Point,
    Size,
    WorkspaceConfig,
    WorkspacesConfig,
    WorkspaceState,
)

__all__ = [
    # Workspace
    "DEFAULT_WORKSPACES_CONFIG",
    "DisplayInfo",
    "Point",
    "Size",
    "WorkspaceConfig",
    "WorkspaceState",
    "WorkspacesConfig",
    # Enums
    "LifecycleState",
    "WorkspaceStatus",
    # API schemas
    "CurrentWorkspaceResponse",
    "GetPageRequest",
    "GetPageResponse",
    "ListPagesResponse",
    "ListWorkspacesResponse",
    "ServerInfoResponse",
    "StopWorkspaceResponse",
    "SuccessResponse",
    "SwitchWorkspaceResponse",
    "ViewportSize",
    "WorkspaceRequest",
]
