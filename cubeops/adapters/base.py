"""
Driver base — the contract between the provisioner and one resource kind.

The provisioner never talks to git, docker or yarn directly. For each
resource kind there is exactly one ``ResourceDriver`` that knows how to
observe the resource, bring it into existence, and take it down again.
Every external command goes through ``ctx.runner``.

To add a resource kind:
    1. Add a model to ``cubeops.core.models.resource``
    2. Subclass ResourceDriver and implement kind, tools, probe, create, teardown
    3. Register the driver in ``DriverRegistry.default()``
"""

from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from cubeops.core.errors import ExternalToolError
from cubeops.core.models.resource import ObservedState, ResourceKind

if TYPE_CHECKING:
    from cubeops.core.context import RunContext
    from cubeops.core.engine.runner import CommandResult


class ResourceDriver(ABC):
    """Abstract base class for resource drivers.

    Contract:
        probe     read-only; returns Absent | Healthy | Degraded. May raise
                  ExecutionError, which the StateProbe maps to Degraded.
        create    bring an Absent resource into existence. Raises on failure.
        teardown  remove whatever exists. Called best-effort; may raise.
        validate  cheap static checks before anything runs.
    """

    @property
    @abstractmethod
    def kind(self) -> ResourceKind:
        """The resource kind this driver handles."""

    @property
    def tools(self) -> tuple[str, ...]:
        """Executables this driver needs on PATH."""
        return ()

    def is_available(self) -> bool:
        """Whether every required tool is installed. Never raises."""
        return all(shutil.which(t) is not None for t in self.tools)

    def validate(self, resource, ctx: RunContext) -> tuple[bool, str]:
        """Return (is_valid, error_message). error_message is empty if valid."""
        return True, ""

    @abstractmethod
    def probe(self, resource, ctx: RunContext) -> ObservedState:
        """Observe the resource's current state."""

    @abstractmethod
    def create(self, resource, ctx: RunContext) -> None:
        """Create the resource. Raises CubeOpsError on failure."""

    @abstractmethod
    def teardown(self, resource, ctx: RunContext) -> None:
        """Remove the resource, including partial state."""

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def require(result: CommandResult) -> CommandResult:
        """Raise ExternalToolError unless the command succeeded."""
        if not result.ok:
            raise ExternalToolError(result.command, result.exit_code, result.stderr)
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} kind={self.kind.value!r}>"
