"""
Network helpers and the TCP port driver.
"""

from __future__ import annotations

import logging
import signal
import socket

from cubeops.adapters.base import ResourceDriver
from cubeops.core.errors import CubeOpsError, ExecutionError
from cubeops.core.models.resource import ObservedState, ResourceKind, TcpPort

logger = logging.getLogger(__name__)


def port_open(host: str, port: int, timeout: float = 2.0) -> bool:
    """True if a TCP connection to host:port succeeds within ``timeout``."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def port_in_use(port: int, host: str = "0.0.0.0") -> bool:
    """True if ``port`` cannot be bound on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return True
    return False


def find_available_port(base: int, *, max_tries: int = 100) -> int:
    """The first port from ``base`` upward that nothing has bound."""
    for port in range(base, min(base + max_tries, 65536)):
        if not port_in_use(port):
            return port
    raise CubeOpsError(f"No free port in {base}-{base + max_tries - 1}")


def pids_on_port(port: int, ctx) -> list[int]:
    """PIDs with a TCP socket listening on ``port`` (via ``lsof``).

    Clients connected to the port are not included.
    """
    result = ctx.runner.run(
        "lsof", ["-t", f"-iTCP:{port}", "-sTCP:LISTEN"], mutating=False,
    )
    if not result.ok:
        return []
    return [int(p) for p in result.stdout.split() if p.isdigit()]


def free_port(port: int, ctx) -> list[int]:
    """Kill whatever listens on ``port``. Best-effort; returns the PIDs signalled."""
    try:
        pids = pids_on_port(port, ctx)
    except ExecutionError as e:
        logger.debug("Cannot inspect port %d: %s", port, e)
        return []
    for pid in pids:
        logger.info("Killing PID %d on port %d", pid, port)
        ctx.runner.run("kill", [f"-{int(signal.SIGKILL)}", str(pid)])
    return pids


class TcpPortDriver(ResourceDriver):
    """A port that must accept connections.

    Ports are not created directly: they open as a side effect of some
    other resource (usually the compose service before it in the plan).
    ``create`` only logs; the readiness budget does the waiting.
    """

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.TCP_PORT

    def probe(self, resource: TcpPort, ctx) -> ObservedState:
        if port_open(resource.host, resource.port, resource.timeout):
            return ObservedState.present()
        return ObservedState.absent(f"{resource.host}:{resource.port} refused")

    def create(self, resource: TcpPort, ctx) -> None:
        logger.info("Waiting for %s:%d to accept connections", resource.host, resource.port)

    def teardown(self, resource: TcpPort, ctx) -> None:
        pass
