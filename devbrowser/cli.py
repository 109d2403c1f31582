"""Command-line entry point: ``devbrowser serve``.

SIGINT, SIGTERM and SIGHUP all end in uvicorn's graceful exit.  uvicorn closes
the listening and client sockets first (forcibly after
``shutdown_socket_timeout``); the app lifespan then closes pages, connections
and browser processes in that order.
"""

import os
import signal

import click


@click.group()
def main() -> None:
    """Dev Browser - persistent, named browser pages in isolated Chrome workspaces."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from DEV_BROWSER_HOST or 127.0.0.1).")
@click.option("--port", default=None, type=int, help="Bind port (default: from DEV_BROWSER_PORT or 9222).")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="Workspaces JSON file (default: ~/.dev-browser/workspaces.json, created if missing).",
)
@click.option("--headless", is_flag=True, default=False, help="Always run Chrome headless.")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, config_path: str | None, headless: bool, reload: bool) -> None:
    """Start the workspace server."""
    import uvicorn

    from devbrowser.workspace_server.log import setup_logging
    from devbrowser.workspace_server.settings import _get_settings_cached, get_settings

    # The app builds its own settings inside the lifespan (possibly in a reload
    # worker), so CLI overrides travel through the environment.
    if config_path:
        os.environ["DEV_BROWSER_CONFIG_PATH"] = config_path
    if headless:
        os.environ["DEV_BROWSER_HEADLESS"] = "true"
    _get_settings_cached.cache_clear()

    settings = get_settings()
    setup_logging(settings.log_level)

    options = {
        "host": host or settings.host,
        "port": port or settings.port,
        "log_level": "warning",  # uvicorn's own logging is intercepted by loguru
        # Client sockets still open after this many seconds are closed forcibly.
        "timeout_graceful_shutdown": settings.shutdown_socket_timeout,
    }

    if reload:
        # The reloader supervises its own worker processes and their signals.
        uvicorn.run("devbrowser.workspace_server.app:app", reload=True, **options)
        return

    config = uvicorn.Config("devbrowser.workspace_server.app:app", **options)
    server = uvicorn.Server(config)
    if hasattr(signal, "SIGHUP"):
        # uvicorn handles SIGINT/SIGTERM; a closed terminal should shut down just as cleanly.
        signal.signal(signal.SIGHUP, lambda sig, frame: server.handle_exit(signal.SIGTERM, frame))

    click.echo(f"Workspace server: http://{config.host}:{config.port}")
    server.run()


if __name__ == "__main__":
    main()
