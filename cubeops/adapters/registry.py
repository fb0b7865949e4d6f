"""
Driver registry — kind tag → driver dispatch.

The registry is the single point of driver management. The provisioner
looks drivers up here by the resource's ``kind``; it never imports a
driver class directly. Tests either register a MockDriver for the kinds
they exercise, or switch the whole registry into mock mode.
"""

from __future__ import annotations

import logging
from typing import Any

from cubeops.adapters.base import ResourceDriver
from cubeops.core.models.resource import ResourceKind

logger = logging.getLogger(__name__)


class DriverRegistry:
    """Central registry and dispatcher for resource drivers.

    Features:
        - Register/unregister drivers by kind
        - Mock mode: route every kind to a single mock driver
        - Query driver availability
    """

    def __init__(self, mock_driver: ResourceDriver | None = None):
        self._drivers: dict[ResourceKind, ResourceDriver] = {}
        self._mock_driver = mock_driver

    @classmethod
    def default(cls) -> DriverRegistry:
        """Registry with one real driver per resource kind."""
        from cubeops.adapters.containers.docker import ComposeServiceDriver, DockerTagDriver
        from cubeops.adapters.db.schema import DbSchemaDriver
        from cubeops.adapters.languages.node import PackageLinkDriver
        from cubeops.adapters.shell.network import TcpPortDriver
        from cubeops.adapters.vcs.git import GitWorktreeDriver

        registry = cls()
        for driver in (
            GitWorktreeDriver(),
            ComposeServiceDriver(),
            TcpPortDriver(),
            PackageLinkDriver(),
            DockerTagDriver(),
            DbSchemaDriver(),
        ):
            registry.register(driver)
        return registry

    @property
    def mock_mode(self) -> bool:
        return self._mock_driver is not None

    def set_mock_mode(self, mock_driver: ResourceDriver | None) -> None:
        """Route every lookup to ``mock_driver`` (None disables mock mode)."""
        self._mock_driver = mock_driver

    def register(self, driver: ResourceDriver) -> None:
        kind = driver.kind
        if kind in self._drivers:
            logger.warning("Overwriting existing driver for %s", kind)
        self._drivers[kind] = driver
        logger.debug("Registered driver: %s", kind)

    def unregister(self, kind: ResourceKind) -> None:
        self._drivers.pop(kind, None)

    def get(self, kind: ResourceKind | str) -> ResourceDriver:
        """Look up the driver for a kind.

        Raises:
            KeyError: No driver is registered for ``kind``.
        """
        if self._mock_driver is not None:
            return self._mock_driver
        try:
            return self._drivers[ResourceKind(kind)]
        except (KeyError, ValueError):
            raise KeyError(f"No driver registered for kind '{kind}'") from None

    def kinds(self) -> list[ResourceKind]:
        return list(self._drivers)

    def driver_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered driver's tools."""
        status = {}
        for kind, driver in self._drivers.items():
            status[kind.value] = {
                "kind": kind.value,
                "available": driver.is_available(),
                "tools": list(driver.tools),
                "type": driver.__class__.__name__,
            }
        return status
