"""
Error taxonomy — every failure an operator can see.

The CLI maps these to exit codes in one place (``cubeops.main``):

    UsageError            → 1
    ConfirmationDeclined  → 0   (clean exit, nothing further done)
    ExternalToolError     → the tool's own exit code (or 1)
    ReadinessTimeoutError → 1
    anything else         → 1

ConflictError never reaches the CLI: version collisions are resolved
by bumping the patch component and retrying.
"""

from __future__ import annotations

from typing import Any, Literal


class CubeOpsError(Exception):
    """Base class for all cubeops errors."""

    exit_code: int = 1


class UsageError(CubeOpsError):
    """Bad flags, missing directories, missing credentials."""


class ConfigError(CubeOpsError):
    """Raised when cubeops.yml is invalid."""


class ConfirmationDeclined(CubeOpsError):
    """The operator answered 'no' to a destructive prompt."""

    exit_code = 0


class ConflictError(CubeOpsError):
    """A version tag already exists remotely."""

    def __init__(self, tag: str):
        super().__init__(f"Tag already exists: {tag}")
        self.tag = tag


class ExecutionError(CubeOpsError):
    """A child process could not be run to completion.

    Kinds:
        not_found — the executable is not on PATH
        signaled  — the process was killed by a signal
        timeout   — the process exceeded its timeout
    """

    def __init__(
        self,
        kind: Literal["not_found", "signaled", "timeout"],
        command: str,
        signal: int | None = None,
    ):
        if kind == "not_found":
            message = f"Executable not found: {command}"
        elif kind == "signaled":
            message = f"Command killed by signal {signal}: {command}"
        else:
            message = f"Command timed out: {command}"
        super().__init__(message)
        self.kind = kind
        self.command = command
        self.signal = signal


class ExternalToolError(CubeOpsError):
    """An external tool exited non-zero where success was required."""

    def __init__(self, command: str, exit_code: int, stderr: str = ""):
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        message = f"`{command}` exited with code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code if exit_code > 0 else 1
        self.stderr = stderr


class ReadinessTimeoutError(CubeOpsError):
    """A readiness check never passed within its retry budget."""

    def __init__(
        self,
        what: str,
        attempts: int,
        last_observed: Any = None,
        hint: str = "",
    ):
        message = f"{what} not ready after {attempts} attempts"
        if last_observed is not None:
            message = f"{message} (last observed: {last_observed})"
        super().__init__(message)
        self.what = what
        self.attempts = attempts
        self.last_observed = last_observed
        self.hint = hint
