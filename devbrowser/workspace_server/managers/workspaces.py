"""Workspace process lifecycle.

The manager owns every ``ChromeInstance``: at most one per configured
workspace name.  It also holds the "current workspace" pointer, which is only
ever set to a name whose instance is tracked.

Per-name state machine::

    stopped --switch--> running --stop--> stopped

Concurrent first-time ``switch_workspace`` calls for the same name are
single-flight: they share one pending launch task, so exactly one browser
process is spawned and every caller receives the same instance (or the same
``LaunchError``).  A failed launch clears the pending slot so the next call
retries.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from devbrowser.workspace_server.models.enums import WorkspaceStatus
from devbrowser.workspace_server.models.workspace import WorkspaceState

if TYPE_CHECKING:
    from collections.abc import Mapping

    from devbrowser.workspace_server.launcher import ChromeInstance, ProcessLauncher
    from devbrowser.workspace_server.models.workspace import WorkspaceConfig


class UnknownWorkspaceError(LookupError):
    """Raised when a workspace name is not in the static config."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(f"Unknown workspace: {name}. Available: {', '.join(available)}")


class WorkspaceManager:
    def __init__(
        self,
        workspaces: Mapping[str, WorkspaceConfig],
        launcher: ProcessLauncher,
        *,
        headless: bool = False,
    ) -> None:
        self._config: dict[str, WorkspaceConfig] = dict(workspaces)
        self._launcher = launcher
        self._headless = headless
        self._instances: dict[str, ChromeInstance] = {}
        self._pending: dict[str, asyncio.Task[ChromeInstance]] = {}
        self._current: str | None = None

    # -- Query -----------------------------------------------------------------

    @property
    def current_workspace(self) -> str | None:
        return self._current

    @property
    def workspace_names(self) -> list[str]:
        return list(self._config)

    def has_workspace(self, name: str) -> bool:
        return name in self._config

    def get_config(self, name: str) -> WorkspaceConfig | None:
        return self._config.get(name)

    def get_instance(self, name: str) -> ChromeInstance | None:
        return self._instances.get(name)

    def current_instance(self) -> ChromeInstance | None:
        if self._current is None:
            return None
        return self._instances.get(self._current)

    def get_workspace_states(self) -> list[WorkspaceState]:
        """Derived state for every configured workspace, in config order."""
        states = []
        for name, config in self._config.items():
            instance = self._instances.get(name)
            states.append(
                WorkspaceState(
                    name=name,
                    profile_directory=config.profile_directory,
                    port=config.port,
                    status=WorkspaceStatus.RUNNING if instance else WorkspaceStatus.STOPPED,
                    ws_endpoint=instance.ws_endpoint if instance else None,
                    pid=instance.pid if instance else None,
                )
            )
        return states

    # -- Mutation --------------------------------------------------------------

    async def switch_workspace(self, name: str) -> ChromeInstance:
        """Make ``name`` current, launching its browser if it is not running."""
        config = self._config.get(name)
        if config is None:
            raise UnknownWorkspaceError(name, self.workspace_names)

        instance = self._instances.get(name)
        if instance is None:
            task = self._pending.get(name)
            if task is None:
                task = asyncio.create_task(self._launch(name, config))
                self._pending[name] = task
                task.add_done_callback(lambda t, n=name: self._clear_pending(n, t))
            else:
                logger.debug("Workspace {}: joining in-flight launch", name)
            # Shielded: a cancelled caller must not abort the launch for everyone else.
            instance = await asyncio.shield(task)

        # A stop may have landed between the launch finishing and this caller resuming.
        if self._instances.get(name) is instance:
            self._current = name
        return instance

    async def _launch(self, name: str, config: WorkspaceConfig) -> ChromeInstance:
        with logger.contextualize(workspace=name):
            instance = await self._launcher.launch(
                name,
                config.profile_directory,
                config.port,
                headless=self._headless,
            )
        self._instances[name] = instance
        return instance

    def _clear_pending(self, name: str, task: asyncio.Task[ChromeInstance]) -> None:
        if self._pending.get(name) is task:
            del self._pending[name]
        # Retrieve the exception so an unawaited failure is not reported as "never retrieved".
        if not task.cancelled():
            task.exception()

    def stop_workspace(self, name: str) -> None:
        """Terminate and untrack ``name``.  No-op when it is not running."""
        instance = self._instances.pop(name, None)
        if instance is None:
            return

        self._launcher.terminate(instance)
        if self._current == name:
            self._current = None
        logger.info("Workspace {} stopped", name)

    def stop_all(self) -> None:
        """Terminate and untrack every running workspace."""
        instances, self._instances = self._instances, {}
        for instance in instances.values():
            self._launcher.terminate(instance)
        self._current = None
        if instances:
            logger.info("Stopped {} workspace(s)", len(instances))
