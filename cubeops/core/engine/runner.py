"""
Command runner — the only place that spawns external processes.

Every git/docker/yarn/apt/psql call in the tool goes through
``CommandRunner.run``. Non-zero exits are returned, not raised;
callers decide what an exit code means. Only conditions where no
exit code exists raise ``ExecutionError``:

    executable missing   → ExecutionError(kind="not_found")
    killed by a signal   → ExecutionError(kind="signaled", signal=N)
    timeout expired      → ExecutionError(kind="timeout")

Dry-run mode logs mutating commands and returns a synthetic success.
Read-only commands pass ``mutating=False`` so probes still see the
real system during a dry run.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from cubeops.core.errors import ExecutionError, ExternalToolError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one process execution."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class CommandRunner:
    """Run external commands with captured output.

    Args:
        dry_run: Log mutating commands instead of running them.
        default_timeout: Seconds before a command is killed.
        history: Every command line run (or simulated), in order.
    """

    dry_run: bool = False
    default_timeout: float = 600.0
    history: list[str] = field(default_factory=list)

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
        timeout: float | None = None,
        capture: bool = True,
        mutating: bool = True,
    ) -> CommandResult:
        """Run ``command args...`` and return its result.

        Args:
            command: Executable name or path.
            args: Arguments.
            cwd: Working directory (default: current).
            env: Extra environment variables merged over os.environ.
            input: Text written to stdin.
            timeout: Override the default timeout.
            capture: Capture stdout/stderr (False = inherit the terminal).
            mutating: False for read-only commands that run even in dry-run.
        """
        argv = [command, *args]
        display = shlex.join(argv)

        if self.dry_run and mutating:
            logger.info("[dry-run] %s%s", display, f" (cwd={cwd})" if cwd else "")
            self.history.append(display)
            return CommandResult(command=display, exit_code=0, dry_run=True)

        if shutil.which(command) is None and not Path(command).is_file():
            raise ExecutionError("not_found", display)

        full_env = None
        if env:
            full_env = {**os.environ, **env}

        logger.debug("Executing: %s (cwd=%s)", display, cwd)
        self.history.append(display)
        start = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd) if cwd else None,
                env=full_env,
                input=input,
                capture_output=capture,
                text=True,
                timeout=timeout or self.default_timeout,
            )
        except FileNotFoundError as e:
            raise ExecutionError("not_found", display) from e
        except subprocess.TimeoutExpired as e:
            raise ExecutionError("timeout", display) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if proc.returncode < 0:
            raise ExecutionError("signaled", display, signal=-proc.returncode)

        result = CommandResult(
            command=display,
            exit_code=proc.returncode,
            stdout=(proc.stdout or "").strip() if capture else "",
            stderr=(proc.stderr or "").strip() if capture else "",
            duration_ms=elapsed_ms,
        )
        if not result.ok:
            logger.debug("→ exit %d: %s", result.exit_code, result.stderr[:500])
        return result

    def check(self, command: str, args: Sequence[str] = (), **kwargs) -> CommandResult:
        """Like ``run`` but raise ExternalToolError on a non-zero exit."""
        result = self.run(command, args, **kwargs)
        if not result.ok:
            raise ExternalToolError(result.command, result.exit_code, result.stderr)
        return result

    def succeeds(self, command: str, args: Sequence[str] = (), **kwargs) -> bool:
        """Read-only check: True when the command runs and exits 0."""
        kwargs.setdefault("mutating", False)
        try:
            return self.run(command, args, **kwargs).ok
        except ExecutionError:
            return False

    def available(self, command: str) -> bool:
        """Whether an executable is on PATH."""
        return shutil.which(command) is not None
