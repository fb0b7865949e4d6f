"""
Run context — everything a component needs to know about this invocation.

Built once by the CLI root and passed explicitly to every service,
driver and the provisioner. There is no module-level state: tests
build their own context with a fake runner and a scripted prompt.

    ctx = RunContext(workdir=tmp_path, runner=FakeRunner(), assume_yes=True)
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import click

from cubeops.core.config.loader import CubeOpsConfig
from cubeops.core.engine.runner import CommandRunner
from cubeops.core.engine.tasks import TaskGroup
from cubeops.core.errors import ConfirmationDeclined, UsageError
from cubeops.core.models.budget import RetryBudget

logger = logging.getLogger(__name__)


def _stdin_is_tty() -> bool:
    try:
        return sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


@dataclass
class RunContext:
    """Explicit per-invocation context.

    Attributes:
        workdir: Directory relative paths resolve against.
        runner: Process runner (carries the dry-run flag).
        config: Loaded cubeops.yml (defaults if absent).
        assume_yes: Skip confirmation prompts (--yes / --force).
        interactive: Whether prompts may be shown at all.
        confirm_fn: Yes/no prompt (click.confirm by default).
        prompt_fn: Free-text prompt (click.prompt by default).
        tasks: Background tasks owned by this run.
        sleep: Sleep function for readiness loops.
    """

    workdir: Path = field(default_factory=Path.cwd)
    runner: CommandRunner = field(default_factory=CommandRunner)
    config: CubeOpsConfig = field(default_factory=CubeOpsConfig)
    assume_yes: bool = False
    interactive: bool = field(default_factory=_stdin_is_tty)
    confirm_fn: Callable[..., bool] = click.confirm
    prompt_fn: Callable[..., str] = click.prompt
    tasks: TaskGroup | None = None
    sleep: Callable[[float], None] | None = None

    def __post_init__(self) -> None:
        if self.tasks is None:
            self.tasks = TaskGroup(dry_run=self.runner.dry_run)

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    def resolve(self, path: str | Path) -> Path:
        """Resolve a path against the working directory, expanding ``~``."""
        p = Path(path).expanduser()
        return p if p.is_absolute() else self.workdir / p

    def budget(self, name: str) -> RetryBudget:
        """Look up a named retry budget (config overrides defaults)."""
        return self.config.budget(name)

    def confirm(self, question: str) -> None:
        """Gate a destructive action.

        Returns normally when the action may proceed. Raises
        ConfirmationDeclined when the operator says no, and UsageError
        when no answer can be obtained (non-interactive without --yes).
        """
        if self.assume_yes:
            logger.debug("Auto-confirmed: %s", question)
            return
        if not self.interactive:
            raise UsageError(
                f"Confirmation required: {question} "
                "Re-run with --yes to proceed non-interactively."
            )
        if not self.confirm_fn(question, default=False):
            raise ConfirmationDeclined(f"Declined: {question}")
