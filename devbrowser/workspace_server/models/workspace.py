"""Workspace data models.

A workspace is a named, isolated browser profile with its own user data
directory and a fixed CDP port.  The static set of workspaces is declared in
``workspaces.json``; ``WorkspaceState`` is the derived runtime view.

On disk and on the wire keys are camelCase (``profileDirectory``,
``defaultWorkspace``, ``wsEndpoint``) so existing config files and clients
keep working.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from devbrowser.workspace_server.models.enums import WorkspaceStatus


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkspaceConfig(CamelModel):
    """One declared workspace."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    profile_directory: str = Field(description="Profile label, used for logging and display.")
    port: int = Field(ge=1, le=65535, description="Fixed remote debugging port.")


class WorkspacesConfig(CamelModel):
    """Contents of ``workspaces.json``."""

    workspaces: dict[str, WorkspaceConfig] = Field(min_length=1)
    default_workspace: str

    @model_validator(mode="after")
    def _default_is_declared(self) -> WorkspacesConfig:
        if self.default_workspace not in self.workspaces:
            msg = (
                f"defaultWorkspace '{self.default_workspace}' is not one of the "
                f"configured workspaces: {', '.join(self.workspaces)}"
            )
            raise ValueError(msg)
        return self


DEFAULT_WORKSPACES_CONFIG = WorkspacesConfig(
    workspaces={
        "personal": WorkspaceConfig(profile_directory="Default", port=9230),
        "work": WorkspaceConfig(profile_directory="Work", port=9231),
    },
    default_workspace="personal",
)


class WorkspaceState(CamelModel):
    """Runtime view of a configured workspace, computed on demand."""

    name: str
    profile_directory: str
    port: int
    status: WorkspaceStatus
    ws_endpoint: str | None = None
    pid: int | None = None


class Point(BaseModel):
    x: int
    y: int


class Size(BaseModel):
    width: int
    height: int


class DisplayInfo(BaseModel):
    """Off-screen placement target for browser windows."""

    origin: Point
    resolution: Size
