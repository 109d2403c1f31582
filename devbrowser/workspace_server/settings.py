"""Service configuration loaded from DEV_BROWSER_* environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_DATA_DIR = Path.home() / ".dev-browser"


class DevBrowserSettings(BaseSettings):
    """Workspace server settings.

    All fields are read from environment variables with the ``DEV_BROWSER_``
    prefix.  For example, ``DEV_BROWSER_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    The set of workspaces (names, profiles, CDP ports) is **not** managed
    here -- it lives in the JSON file at ``config_path``, see
    ``config_file.load_or_create_config``.
    """

    model_config = SettingsConfigDict(
        env_prefix="DEV_BROWSER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Server ----------------------------------------------------------------
    host: str = "127.0.0.1"
    port: int = 9222
    shutdown_socket_timeout: int = 5
    """Seconds uvicorn waits for open client sockets before closing them."""

    # -- Storage ---------------------------------------------------------------
    data_dir: Path = _DEFAULT_DATA_DIR
    """Root for per-workspace user data directories (``{data_dir}/workspaces/{name}``)."""

    config_path: Path | None = None
    """Workspaces JSON file.  Defaults to ``{data_dir}/workspaces.json``."""

    # -- Browser ---------------------------------------------------------------
    chrome_path: str | None = None
    """Explicit browser executable.  Platform defaults are probed when unset."""

    headless: bool = False
    """Force headless even when an off-screen display is available."""

    window_width: int = Field(default=1920, gt=0)
    window_height: int = Field(default=1080, gt=0)

    cdp_max_retries: int = Field(default=30, ge=1)
    cdp_retry_delay: float = Field(default=0.5, ge=0)
    """Seconds between polls of ``/json/version`` while a browser starts."""

    kill_grace_period: float = Field(default=3.0, ge=0)
    """Seconds between SIGTERM and SIGKILL when stopping a browser."""

    display_settle_delay: float = Field(default=1.0, ge=0)
    """Seconds to wait after creating a virtual display before re-detecting."""

    # -- Helpers ---------------------------------------------------------------

    def resolve_config_path(self) -> Path:
        """Return the configured workspaces file or the default under ``data_dir``."""
        if self.config_path is not None:
            return self.config_path
        return self.data_dir / "workspaces.json"

    @property
    def workspaces_data_dir(self) -> Path:
        return self.data_dir / "workspaces"


def get_settings() -> DevBrowserSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> DevBrowserSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return DevBrowserSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
