"""Workspaces config file (``workspaces.json``).

Layout::

    {
      "workspaces": {
        "personal": {"profileDirectory": "Default", "port": 9230},
        "work": {"profileDirectory": "Work", "port": 9231}
      },
      "defaultWorkspace": "personal"
    }

Loaded once at startup.  A missing file is created with the two-entry default.
Uses ``anyio.to_thread.run_sync`` so the event loop never blocks on disk I/O,
and writes atomically (temp file + rename) so a crash never leaves a
half-written config behind.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger
from pydantic import ValidationError

from devbrowser.workspace_server.models.workspace import DEFAULT_WORKSPACES_CONFIG, WorkspacesConfig


class ConfigError(ValueError):
    """Raised when the workspaces file exists but cannot be parsed or validated."""


async def load_or_create_config(path: str | Path) -> WorkspacesConfig:
    """Load ``path``, creating it with the default config if it does not exist."""
    return await to_thread.run_sync(partial(_load_or_create, Path(path)))


def _load_or_create(path: Path) -> WorkspacesConfig:
    if not path.exists():
        data = DEFAULT_WORKSPACES_CONFIG.model_dump_json(by_alias=True, indent=2)
        _atomic_write(path, data)
        logger.info("Created default workspaces config at {}", path)
        return DEFAULT_WORKSPACES_CONFIG

    raw = path.read_text(encoding="utf-8")
    try:
        config = WorkspacesConfig.model_validate_json(raw)
    except ValidationError as exc:
        msg = f"Invalid workspaces config {path}: {exc}"
        raise ConfigError(msg) from None

    logger.info("Loaded workspaces config from {} ({})", path, ", ".join(config.workspaces))
    return config


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise
