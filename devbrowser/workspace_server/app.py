"""FastAPI application for the workspace server.

Shutdown happens in two phases.  uvicorn goes first: it stops accepting
connections, waits up to ``shutdown_socket_timeout`` seconds for open client
sockets and then closes them.  Only after that does the lifespan below tear
down browser state, in ownership order: named pages, then CDP connections,
then Chrome processes (see ``WorkspaceController.shutdown``).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from devbrowser.workspace_server.config_file import load_or_create_config
from devbrowser.workspace_server.controller import WorkspaceController
from devbrowser.workspace_server.deps import Controller
from devbrowser.workspace_server.log import setup_logging
from devbrowser.workspace_server.models.api import ServerInfoResponse
from devbrowser.workspace_server.settings import get_settings


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)

    config_path = settings.resolve_config_path()
    config = await load_or_create_config(config_path)

    logger.info("Workspace server starting (host={}, port={})", settings.host, settings.port)
    logger.info("Available workspaces: {}", ", ".join(config.workspaces))
    logger.info("Default workspace: {}", config.default_workspace)

    controller = WorkspaceController.from_settings(settings, config)
    _app.state.controller = controller

    yield

    # -- Shutdown --------------------------------------------------------------
    # uvicorn has already stopped accepting connections and closed lingering
    # client sockets (timeout_graceful_shutdown) by the time we get here.
    await controller.shutdown()


app = FastAPI(title="Dev Browser Workspace Server", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed or missing request fields as 400, not FastAPI's default 422."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": _jsonable_errors(exc)},
    )


def _jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/", response_model=ServerInfoResponse)
async def server_info(controller: Controller) -> ServerInfoResponse:
    workspace, ws_endpoint = controller.server_info()
    return ServerInfoResponse(ws_endpoint=ws_endpoint, workspace=workspace)


# -- Routers -----------------------------------------------------------------
from devbrowser.workspace_server.routers.pages import router as pages_router  # noqa: E402
from devbrowser.workspace_server.routers.workspaces import router as workspaces_router  # noqa: E402

app.include_router(workspaces_router)
app.include_router(pages_router)
