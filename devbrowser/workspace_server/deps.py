"""FastAPI dependency injection for the workspace controller.

Usage in route handlers::

    @router.get("/pages")
    async def list_pages(controller: Controller) -> ListPagesResponse:
        ...

The dependency raises HTTP 503 until the lifespan has created the controller
(or after a test forgot to set ``app.state.controller``).
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from devbrowser.workspace_server.controller import WorkspaceController


async def get_controller(request: Request) -> WorkspaceController:
    """Return the shared controller created during lifespan startup."""
    controller: WorkspaceController | None = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workspace server is not initialised.",
        )
    return controller


# -- Annotated type aliases for concise route signatures ---------------------

Controller = Annotated[WorkspaceController, Depends(get_controller)]
"""Annotated dependency: the process-wide workspace controller."""
