"""Workspace endpoints.

Thin HTTP adapter: delegates to the workspace controller and maps domain
exceptions to status codes.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from loguru import logger
from playwright.async_api import Error as PlaywrightError

from devbrowser.workspace_server.deps import Controller
from devbrowser.workspace_server.launcher import LaunchError
from devbrowser.workspace_server.lifecycle import ShuttingDownError
from devbrowser.workspace_server.managers.workspaces import UnknownWorkspaceError
from devbrowser.workspace_server.models.api import (
    CurrentWorkspaceResponse,
    ListWorkspacesResponse,
    StopWorkspaceResponse,
    SwitchWorkspaceResponse,
    WorkspaceRequest,
)

router = APIRouter(tags=["workspaces"])


@router.get("/workspaces", response_model=ListWorkspacesResponse)
async def list_workspaces(controller: Controller) -> ListWorkspacesResponse:
    """List every configured workspace with its runtime status."""
    return ListWorkspacesResponse(
        workspaces=controller.manager.get_workspace_states(),
        current=controller.manager.current_workspace,
    )


@router.get("/workspace/current", response_model=CurrentWorkspaceResponse)
async def current_workspace(controller: Controller) -> CurrentWorkspaceResponse:
    workspace, ws_endpoint = controller.server_info()
    return CurrentWorkspaceResponse(workspace=workspace, ws_endpoint=ws_endpoint)


@router.post("/workspace/switch", response_model=SwitchWorkspaceResponse)
async def switch_workspace(body: WorkspaceRequest, controller: Controller) -> SwitchWorkspaceResponse:
    """Switch to a workspace, launching its browser if needed."""
    try:
        logger.info("Switching to workspace: {}", body.workspace)
        instance = await controller.switch_workspace(body.workspace)
    except UnknownWorkspaceError as exc:
        raise HTTPException(
            status.HTTP_404_NOT_FOUND,
            detail={"error": f"Unknown workspace: {exc.name}", "available": exc.available},
        ) from None
    except ShuttingDownError:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server is shutting down.") from None
    except (LaunchError, PlaywrightError) as exc:
        logger.error("Failed to switch workspace {}: {}", body.workspace, exc)
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to switch workspace: {exc}",
        ) from None

    return SwitchWorkspaceResponse(workspace=body.workspace, ws_endpoint=instance.ws_endpoint)


@router.post("/workspace/stop", response_model=StopWorkspaceResponse)
async def stop_workspace(body: WorkspaceRequest, controller: Controller) -> StopWorkspaceResponse:
    """Stop a workspace: close its pages, disconnect, terminate its browser."""
    await controller.stop_workspace(body.workspace)
    return StopWorkspaceResponse(workspace=body.workspace)
