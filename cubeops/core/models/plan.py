"""
Plan and result models — the provisioning contract.

A ProvisionPlan is built once per run from probe results and never
changes afterwards. Executing it yields one ExecutionResult per step;
results are terminal and never mutated once the step completes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cubeops.core.models.resource import ObservedState, Resource


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ProvisionAction(StrEnum):
    """What the provisioner will do with a resource.

    Plans built from probes only contain skip, create and recreate.
    Repair re-runs create without a teardown; remove is used by cleanup.
    """

    SKIP = "skip"
    CREATE = "create"
    REPAIR = "repair"
    RECREATE = "recreate"
    REMOVE = "remove"

    @property
    def mutating(self) -> bool:
        return self is not ProvisionAction.SKIP


class PlanStep(BaseModel):
    """One {resource, action} pair plus the observation that chose it."""

    model_config = ConfigDict(frozen=True)

    resource: Resource
    action: ProvisionAction
    observed: ObservedState


class ProvisionPlan(BaseModel):
    """Ordered, immutable sequence of plan steps."""

    model_config = ConfigDict(frozen=True)

    steps: tuple[PlanStep, ...] = ()

    @property
    def actions(self) -> list[ProvisionAction]:
        return [s.action for s in self.steps]

    @property
    def is_noop(self) -> bool:
        """True when every step is a skip."""
        return all(not s.action.mutating for s in self.steps)

    def __len__(self) -> int:
        return len(self.steps)


class ExecutionResult(BaseModel):
    """Outcome of executing one plan step."""

    model_config = ConfigDict(frozen=True)

    resource: str                     # resource label, e.g. "tcp-port:postgres"
    action: ProvisionAction
    succeeded: bool
    attempts: int = 0                 # readiness checks made during VERIFY
    last_error: str | None = None
    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    @property
    def skipped(self) -> bool:
        return self.action is ProvisionAction.SKIP and self.succeeded


class RunReport(BaseModel):
    """All results of one invocation."""

    results: list[ExecutionResult] = Field(default_factory=list)
    aborted: bool = False             # fail-fast stopped before the end

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.succeeded)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and not self.aborted

    @property
    def status(self) -> str:
        if self.all_ok:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    @property
    def first_failure(self) -> ExecutionResult | None:
        return next((r for r in self.results if not r.succeeded), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "aborted": self.aborted,
            "results": [r.model_dump(mode="json") for r in self.results],
        }
