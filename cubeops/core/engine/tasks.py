"""
Background tasks — long-lived helper processes owned by one run.

The debug workflow starts processes it does not wait on (the
TypeScript watch compiler, the SQL API binary). Each is tracked by a
``BackgroundTask`` handle in a ``TaskGroup``; the group terminates
every handle on every exit path:

    with TaskGroup() as tasks:          # normal exit / exception
        tasks.install_handlers()        # SIGINT / SIGTERM / atexit
        tasks.spawn("tsc", ["yarn", "tsc:watch"], cwd=repo)
        ...
"""

from __future__ import annotations

import atexit
import logging
import os
import signal
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import FrameType
from typing import IO

from cubeops.core.errors import ExecutionError

logger = logging.getLogger(__name__)


@dataclass
class BackgroundTask:
    """Handle on one detached child process."""

    name: str
    process: subprocess.Popen
    log_path: Path | None = None
    _log_file: IO[str] | None = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.poll() is None

    def terminate(self, timeout: float = 5.0) -> None:
        """Stop the process: SIGTERM, then SIGKILL after ``timeout``.

        Safe to call more than once.
        """
        if self.running:
            logger.info("Stopping %s (PID %d)", self.name, self.pid)
            self.process.terminate()
            try:
                self.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning("%s did not stop, killing PID %d", self.name, self.pid)
                self.process.kill()
                self.process.wait(timeout=timeout)
        if self._log_file is not None and not self._log_file.closed:
            self._log_file.close()


class TaskGroup:
    """All background tasks of one invocation."""

    def __init__(self, dry_run: bool = False):
        self._tasks: list[BackgroundTask] = []
        self._dry_run = dry_run
        self._handlers_installed = False
        self._previous_handlers: dict[int, object] = {}

    @property
    def tasks(self) -> list[BackgroundTask]:
        return list(self._tasks)

    def spawn(
        self,
        name: str,
        argv: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        log_path: Path | None = None,
    ) -> BackgroundTask | None:
        """Start ``argv`` detached and track it.

        Output goes to ``log_path`` when given, otherwise it is discarded.
        Returns None in dry-run mode.
        """
        if self._dry_run:
            logger.info("[dry-run] would start %s: %s", name, " ".join(argv))
            return None

        log_file: IO[str] | None = None
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_file = open(log_path, "a", encoding="utf-8")  # closed by terminate()

        try:
            proc = subprocess.Popen(
                list(argv),
                cwd=str(cwd) if cwd else None,
                env={**os.environ, **env} if env else None,
                stdout=log_file or subprocess.DEVNULL,
                stderr=subprocess.STDOUT if log_file else subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            if log_file is not None:
                log_file.close()
            raise ExecutionError("not_found", argv[0]) from e

        task = BackgroundTask(name=name, process=proc, log_path=log_path, _log_file=log_file)
        self._tasks.append(task)
        logger.info("%s started with PID %d", name, proc.pid)
        return task

    def terminate_all(self) -> None:
        """Terminate every tracked task, newest first. Never raises."""
        while self._tasks:
            task = self._tasks.pop()
            try:
                task.terminate()
            except OSError as e:
                logger.warning("Failed to stop %s: %s", task.name, e)

    def install_handlers(self) -> None:
        """Guarantee cleanup on interpreter exit and on SIGINT/SIGTERM."""
        if self._handlers_installed:
            return
        atexit.register(self.terminate_all)
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, self._on_signal)
        self._handlers_installed = True

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        logger.warning("Received signal %d, cleaning up background tasks", signum)
        self.terminate_all()
        previous = self._previous_handlers.get(signum)
        if callable(previous):
            previous(signum, frame)
        else:
            raise SystemExit(128 + signum)

    def __enter__(self) -> TaskGroup:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.terminate_all()
