"""
Mock driver — in-memory stand-in for every resource kind.

Keeps a fake "external world" keyed by resource label so engine tests
can script what a probe sees without touching git or docker:

    mock = MockDriver()
    mock.set_state("compose-service:postgres", ObservedState.degraded("stopped"))
    mock.set_ready_after("compose-service:postgres", 2)   # healthy on 2nd probe after create
"""

from __future__ import annotations

from cubeops.adapters.base import ResourceDriver
from cubeops.core.errors import ExternalToolError
from cubeops.core.models.resource import ObservedState, ResourceKind


class MockDriver(ResourceDriver):
    """Universal mock driver for testing.

    By default every resource starts Absent, create makes it Healthy
    immediately and teardown makes it Absent again.
    """

    def __init__(self, kind: ResourceKind = ResourceKind.COMPOSE_SERVICE, available: bool = True):
        self._kind = kind
        self._available = available
        self._states: dict[str, ObservedState] = {}
        self._ready_after: dict[str, int] = {}
        self._pending: dict[str, int] = {}
        self._failures: dict[tuple[str, str], str] = {}
        self._call_log: list[tuple[str, str]] = []

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    @property
    def call_log(self) -> list[tuple[str, str]]:
        """(operation, resource label) for every call received."""
        return self._call_log

    @property
    def mutation_count(self) -> int:
        """Number of create/teardown calls."""
        return sum(1 for op, _ in self._call_log if op in ("create", "teardown"))

    def calls(self, operation: str) -> list[str]:
        return [label for op, label in self._call_log if op == operation]

    def is_available(self) -> bool:
        return self._available

    # ── Scripting ───────────────────────────────────────────────

    def set_state(self, label: str, state: ObservedState) -> None:
        self._states[label] = state

    def set_ready_after(self, label: str, probes: int) -> None:
        """After create, report Absent until the ``probes``-th probe."""
        self._ready_after[label] = probes

    def set_failure(self, label: str, operation: str = "create", error: str = "Mock failure") -> None:
        """Make ``operation`` (probe/create/teardown) raise for ``label``."""
        self._failures[(label, operation)] = error

    def state_of(self, label: str) -> ObservedState:
        return self._states.get(label, ObservedState.absent())

    def reset(self) -> None:
        self._states.clear()
        self._ready_after.clear()
        self._pending.clear()
        self._failures.clear()
        self._call_log.clear()

    # ── Driver contract ─────────────────────────────────────────

    def _maybe_fail(self, label: str, operation: str) -> None:
        error = self._failures.get((label, operation))
        if error is not None:
            raise ExternalToolError(f"mock {operation} {label}", 1, error)

    def probe(self, resource, ctx) -> ObservedState:
        self._call_log.append(("probe", resource.label))
        self._maybe_fail(resource.label, "probe")
        remaining = self._pending.get(resource.label, 0)
        if remaining > 1:
            self._pending[resource.label] = remaining - 1
            return ObservedState.absent("starting")
        if remaining == 1:
            del self._pending[resource.label]
            self._states[resource.label] = ObservedState.present()
        return self.state_of(resource.label)

    def create(self, resource, ctx) -> None:
        self._call_log.append(("create", resource.label))
        self._maybe_fail(resource.label, "create")
        delay = self._ready_after.get(resource.label, 0)
        if delay > 0:
            self._states[resource.label] = ObservedState.absent("starting")
            self._pending[resource.label] = delay
        else:
            self._states[resource.label] = ObservedState.present()

    def teardown(self, resource, ctx) -> None:
        self._call_log.append(("teardown", resource.label))
        self._maybe_fail(resource.label, "teardown")
        self._states[resource.label] = ObservedState.absent()
        self._pending.pop(resource.label, None)
