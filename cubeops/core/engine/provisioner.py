"""
Resource provisioner — bring resources to their desired state.

Per resource:

    PROBE ─ Healthy  ─→ SKIP ──────────────────────→ DONE
          ─ Absent   ─→ CREATE ──────────→ VERIFY ─→ DONE
          ─ Degraded ─→ TEARDOWN → CREATE → VERIFY ─→ DONE | FAILED

VERIFY re-probes under the resource's readiness budget. TEARDOWN is
best-effort: its errors are logged, never fatal. A failed step either
stops the run (fail-fast, the default) or is recorded and the next
step runs (best-effort, used for cleanup).

Flow:
    resources → plan() → ProvisionPlan → execute() → RunReport
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from enum import StrEnum

from cubeops.adapters.base import ResourceDriver
from cubeops.adapters.registry import DriverRegistry
from cubeops.core.context import RunContext
from cubeops.core.engine.probe import StateProbe
from cubeops.core.engine.retry import await_condition
from cubeops.core.errors import CubeOpsError, ReadinessTimeoutError
from cubeops.core.models.budget import RetryBudget
from cubeops.core.models.plan import (
    ExecutionResult,
    PlanStep,
    ProvisionAction,
    ProvisionPlan,
    RunReport,
)

logger = logging.getLogger(__name__)

# Verify once when a resource carries no readiness budget
_VERIFY_ONCE = RetryBudget(max_attempts=1, delay=0)


class ExecutionPolicy(StrEnum):
    """What to do after a failed step."""

    FAIL_FAST = "fail_fast"
    BEST_EFFORT = "best_effort"


class ResourceProvisioner:
    """Plan and execute provisioning for a list of resources.

    Args:
        ctx: Run context (runner, dry-run flag, sleep function).
        registry: Driver registry (default: one real driver per kind).
        policy: Fail-fast or best-effort.
        force: Recreate resources even when they are Healthy.
    """

    def __init__(
        self,
        ctx: RunContext,
        registry: DriverRegistry | None = None,
        *,
        policy: ExecutionPolicy = ExecutionPolicy.FAIL_FAST,
        force: bool = False,
    ):
        self.ctx = ctx
        self.registry = registry or DriverRegistry.default()
        self.policy = policy
        self.force = force
        self.probe = StateProbe(ctx, self.registry)

    # ── Planning ────────────────────────────────────────────────

    def decide(self, observed) -> ProvisionAction:
        if observed.status == "healthy":
            return ProvisionAction.RECREATE if self.force else ProvisionAction.SKIP
        if observed.status == "absent":
            return ProvisionAction.CREATE
        return ProvisionAction.RECREATE

    def plan(self, resources: Iterable) -> ProvisionPlan:
        """Probe every resource once and choose an action for each."""
        steps = []
        for resource in resources:
            observed = self.probe(resource)
            action = self.decide(observed)
            logger.info("%s is %s → %s", resource.label, observed, action)
            steps.append(PlanStep(resource=resource, action=action, observed=observed))
        return ProvisionPlan(steps=tuple(steps))

    # ── Execution ───────────────────────────────────────────────

    def execute(self, plan: ProvisionPlan) -> RunReport:
        """Run every step of ``plan`` in order."""
        report = RunReport()
        for index, step in enumerate(plan.steps):
            result = self._run_step(step)
            report.results.append(result)
            _log_result(result)

            if not result.succeeded and self.policy is ExecutionPolicy.FAIL_FAST:
                if index < len(plan.steps) - 1:
                    report.aborted = True
                    logger.error(
                        "Stopping: %s failed, %d step(s) not run",
                        result.resource,
                        len(plan.steps) - index - 1,
                    )
                break
        return report

    def provision_all(self, resources: Iterable) -> RunReport:
        """plan() followed by execute()."""
        return self.execute(self.plan(resources))

    def provision(self, resource) -> ExecutionResult:
        """Provision a single resource."""
        report = self.provision_all([resource])
        return report.results[0]

    def remove_all(self, resources: Iterable) -> RunReport:
        """Tear resources down in reverse order. Always best-effort."""
        report = RunReport()
        for resource in reversed(list(resources)):
            start = time.monotonic()
            driver = self.registry.get(resource.kind)
            error = self._teardown(driver, resource)
            result = ExecutionResult(
                resource=resource.label,
                action=ProvisionAction.REMOVE,
                succeeded=error is None,
                last_error=error,
                duration_ms=_elapsed_ms(start),
            )
            report.results.append(result)
            _log_result(result)
        return report

    # ── Step state machine ──────────────────────────────────────

    def _run_step(self, step: PlanStep) -> ExecutionResult:
        resource = step.resource
        action = step.action
        start = time.monotonic()

        def result(succeeded: bool, attempts: int = 0, error: str | None = None) -> ExecutionResult:
            return ExecutionResult(
                resource=resource.label,
                action=action,
                succeeded=succeeded,
                attempts=attempts,
                last_error=error,
                duration_ms=_elapsed_ms(start),
            )

        if action is ProvisionAction.SKIP:
            return result(True)

        driver = self.registry.get(resource.kind)
        valid, message = driver.validate(resource, self.ctx)
        if not valid:
            return result(False, error=f"Validation failed: {message}")

        if action in (ProvisionAction.RECREATE, ProvisionAction.REMOVE):
            self._teardown(driver, resource)
            if action is ProvisionAction.REMOVE:
                return result(True)

        try:
            driver.create(resource, self.ctx)
        except (CubeOpsError, OSError) as e:
            logger.debug("create %s failed", resource.label, exc_info=True)
            return result(False, error=str(e))

        if self.ctx.dry_run:
            logger.info("[dry-run] skipping readiness check for %s", resource.label)
            return result(True)

        budget = resource.readiness or _VERIFY_ONCE
        try:
            attempts = await_condition(
                lambda: self.probe(resource),
                budget,
                describe=resource.label,
                hint=getattr(resource, "hint", ""),
                sleep=self.ctx.sleep or time.sleep,
            )
        except ReadinessTimeoutError as e:
            error = str(e)
            if e.hint:
                error = f"{error}. {e.hint}"
            return result(False, attempts=e.attempts, error=error)
        return result(True, attempts=attempts)

    def _teardown(self, driver: ResourceDriver, resource) -> str | None:
        """Best-effort teardown; returns the error message, if any."""
        try:
            driver.teardown(resource, self.ctx)
        except (CubeOpsError, OSError) as e:
            logger.warning("Teardown of %s failed (continuing): %s", resource.label, e)
            return str(e)
        return None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _log_result(result: ExecutionResult) -> None:
    marker = "⊘" if result.skipped else "✓" if result.succeeded else "✗"
    if result.succeeded:
        logger.info("%s %s → %s", marker, result.resource, result.action)
    else:
        logger.error("%s %s → %s failed: %s", marker, result.resource, result.action, result.last_error)
