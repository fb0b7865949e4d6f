"""
Retry policy — bounded polling for readiness.

One parameterized loop replaces the per-service wait loops: port
polling, "database accepts connections", credential rotation, docker
daemon start-up. The budget says how many checks and how long to wait
between them; the check says whether the resource is ready.

Fixed-interval polling is the default. Budgets may opt into capped
exponential backoff (``strategy="exponential"``).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from cubeops.core.errors import ReadinessTimeoutError
from cubeops.core.models.budget import RetryBudget

logger = logging.getLogger(__name__)


def await_condition(
    check: Callable[[], Any],
    budget: RetryBudget,
    *,
    describe: str = "condition",
    hint: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Call ``check`` until it returns a truthy value.

    The check may return a bool, or any object whose truthiness means
    "ready" (e.g. an ObservedState-like object exposing ``healthy``).
    Exceptions raised by the check count as a failed attempt and are
    recorded as the last observation.

    Args:
        check: Zero-argument readiness check.
        budget: Attempts and delay strategy.
        describe: What is being waited for (used in logs and errors).
        hint: Operator guidance appended to the timeout error.
        sleep: Sleep function (injected by tests).

    Returns:
        Number of calls made (1-based) when the check passed.

    Raises:
        ReadinessTimeoutError: After ``budget.max_attempts`` failed checks.
    """
    last_observed: Any = None
    for attempt in range(1, budget.max_attempts + 1):
        try:
            observed = check()
        except Exception as e:  # a crashing probe is a failed attempt
            observed = None
            last_observed = f"{type(e).__name__}: {e}"
        else:
            last_observed = observed

        if _is_ready(observed):
            if attempt > 1:
                logger.info("%s ready after %d attempts", describe, attempt)
            return attempt

        if attempt < budget.max_attempts:
            delay = budget.delay_for(attempt)
            logger.info(
                "Attempt %d of %d: %s not ready yet, waiting %.0fs...",
                attempt,
                budget.max_attempts,
                describe,
                delay,
            )
            sleep(delay)

    raise ReadinessTimeoutError(
        describe,
        attempts=budget.max_attempts,
        last_observed=last_observed,
        hint=hint,
    )


def _is_ready(observed: Any) -> bool:
    """Interpret a check result."""
    if observed is None:
        return False
    healthy = getattr(observed, "healthy", None)
    if isinstance(healthy, bool):
        return healthy
    return bool(observed)
