"""Shared enumerations used across the workspace server."""

from __future__ import annotations

from enum import StrEnum

# -- Workspace ---------------------------------------------------------------


class WorkspaceStatus(StrEnum):
    """Derived status of a configured workspace."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


# -- Server ------------------------------------------------------------------


class LifecycleState(StrEnum):
    """One-shot server lifecycle: running -> shutting_down -> stopped."""

    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
