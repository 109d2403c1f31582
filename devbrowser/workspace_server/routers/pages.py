"""Named page endpoints.

Pages are created in the current workspace (the default workspace is
started on demand).  Clients receive the CDP endpoint plus the page's target
id and attach to it themselves.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from loguru import logger
from playwright.async_api import Error as PlaywrightError

from devbrowser.workspace_server.controller import NoConnectionError
from devbrowser.workspace_server.deps import Controller
from devbrowser.workspace_server.launcher import LaunchError
from devbrowser.workspace_server.lifecycle import ShuttingDownError
from devbrowser.workspace_server.managers.workspaces import UnknownWorkspaceError
from devbrowser.workspace_server.models.api import (
    GetPageRequest,
    GetPageResponse,
    ListPagesResponse,
    SuccessResponse,
)

router = APIRouter(prefix="/pages", tags=["pages"])


@router.get("", response_model=ListPagesResponse)
async def list_pages(controller: Controller) -> ListPagesResponse:
    return ListPagesResponse(pages=controller.list_pages())


@router.post("", response_model=GetPageResponse)
async def get_or_create_page(body: GetPageRequest, controller: Controller) -> GetPageResponse:
    """Return the named page, creating it in the current workspace if needed."""
    viewport = body.viewport.model_dump() if body.viewport else None
    try:
        entry, ws_endpoint = await controller.get_page(body.name, viewport)
    except ShuttingDownError:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server is shutting down.") from None
    except (LaunchError, NoConnectionError, UnknownWorkspaceError, PlaywrightError) as exc:
        logger.error("Failed to create page {}: {}", body.name, exc)
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create page: {exc}",
        ) from None

    return GetPageResponse(ws_endpoint=ws_endpoint, name=entry.name, target_id=entry.target_id)


@router.delete("/{name:path}", response_model=SuccessResponse)
async def close_page(name: str, controller: Controller) -> SuccessResponse:
    if not await controller.close_page(name):
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="page not found")
    return SuccessResponse()
