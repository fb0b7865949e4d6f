"""Drivers — one per resource kind, behind the ResourceDriver contract.

Public re-exports for convenient access.
"""

from cubeops.adapters.base import ResourceDriver
from cubeops.adapters.mock import MockDriver
from cubeops.adapters.registry import DriverRegistry

__all__ = [
    "DriverRegistry",
    "MockDriver",
    "ResourceDriver",
]
