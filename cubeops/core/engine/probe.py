"""
State probe — observe a resource through its kind's driver.

Probing is read-only and never raises for tool failures: a probe that
cannot run its command (missing binary, timeout, non-zero exit where
one was required) reports the resource as Degraded with the reason.
"""

from __future__ import annotations

import logging

from cubeops.adapters.registry import DriverRegistry
from cubeops.core.context import RunContext
from cubeops.core.errors import CubeOpsError
from cubeops.core.models.resource import ObservedState

logger = logging.getLogger(__name__)


class StateProbe:
    """Dispatch ``probe(resource)`` to the driver registered for its kind."""

    def __init__(self, ctx: RunContext, registry: DriverRegistry | None = None):
        self.ctx = ctx
        self.registry = registry or DriverRegistry.default()

    def probe(self, resource) -> ObservedState:
        driver = self.registry.get(resource.kind)
        try:
            state = driver.probe(resource, self.ctx)
        except (CubeOpsError, OSError) as e:
            state = ObservedState.degraded(f"probe failed: {e}")
        logger.debug("probe %s → %s", resource.label, state)
        return state

    __call__ = probe
