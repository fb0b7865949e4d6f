"""
Shared test fixtures and configuration.

Nothing here touches docker, git or the network: commands go to a
scripted ``FakeRunner`` and resources to a ``MockDriver``.
"""

from __future__ import annotations

import shlex
from pathlib import Path

import pytest

from cubeops.adapters.mock import MockDriver
from cubeops.adapters.registry import DriverRegistry
from cubeops.core.config.loader import CubeOpsConfig, DatabaseOverride
from cubeops.core.context import RunContext
from cubeops.core.engine.runner import CommandResult, CommandRunner
from cubeops.core.models.budget import RetryBudget


class FakeRunner(CommandRunner):
    """CommandRunner that records commands instead of running them.

    Responses are matched by command-line prefix, newest first.
    Unmatched commands succeed with empty output.

        runner = FakeRunner()
        runner.on("docker info", exit_code=1, times=2)   # fails twice, then succeeds
        runner.on("git worktree list", stdout="worktree /x\\nbranch refs/heads/main")
    """

    def __init__(self, *, dry_run: bool = False, on_path: set[str] | None = None):
        super().__init__(dry_run=dry_run)
        self.calls: list[dict] = []
        self._responses: list[list] = []
        self.on_path = on_path

    def on(self, prefix: str, *, exit_code: int = 0, stdout: str = "", stderr: str = "",
           times: int | None = None) -> None:
        self._responses.append([prefix, exit_code, stdout, stderr, times])

    def run(self, command, args=(), **kwargs) -> CommandResult:
        display = shlex.join([command, *args])
        self.history.append(display)
        self.calls.append({"command": display, **kwargs})

        if self.dry_run and kwargs.get("mutating", True):
            return CommandResult(command=display, exit_code=0, dry_run=True)

        for response in reversed(self._responses):
            prefix, exit_code, stdout, stderr, times = response
            if not display.startswith(prefix):
                continue
            if times is not None:
                if times <= 0:
                    continue
                response[4] = times - 1
            return CommandResult(command=display, exit_code=exit_code, stdout=stdout, stderr=stderr)
        return CommandResult(command=display, exit_code=0)

    def available(self, command: str) -> bool:
        return True if self.on_path is None else command in self.on_path

    def ran(self, prefix: str) -> list[str]:
        """Every recorded command line starting with ``prefix``."""
        return [c for c in self.history if c.startswith(prefix)]

    def call(self, prefix: str) -> dict:
        """Keyword arguments of the first call starting with ``prefix``."""
        return next(c for c in self.calls if c["command"].startswith(prefix))


# Fast budgets so readiness loops finish immediately
FAST = RetryBudget(max_attempts=3, delay=0)


def make_config(tmp_path: Path) -> CubeOpsConfig:
    return CubeOpsConfig(
        projects_dir=str(tmp_path / "projects"),
        databases={
            kind: DatabaseOverride(data_root=str(tmp_path / "db" / kind))
            for kind in ("postgres", "mysql", "doris")
        },
        budgets={
            name: FAST
            for name in ("port", "doris_port", "db_ready", "credential",
                         "docker_daemon", "compose_service", "server_port")
        },
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by readiness loops."""
    return []


@pytest.fixture
def ctx(tmp_path: Path, runner: FakeRunner, sleeps: list[float]) -> RunContext:
    """Non-interactive context that answers yes to every confirmation."""
    workdir = tmp_path / "work"
    workdir.mkdir()
    return RunContext(
        workdir=workdir,
        runner=runner,
        config=make_config(tmp_path),
        assume_yes=True,
        interactive=False,
        sleep=sleeps.append,
    )


@pytest.fixture
def mock_driver() -> MockDriver:
    return MockDriver()


@pytest.fixture
def mock_registry(mock_driver: MockDriver) -> DriverRegistry:
    """Registry that routes every resource kind to one MockDriver."""
    return DriverRegistry(mock_driver=mock_driver)
