"""
Retry budgets — how long to wait for a resource to become ready.

Budgets are configuration data, not code paths: every readiness loop
in the tool goes through ``await_condition`` with one of these.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RetryBudget(BaseModel):
    """Bounded retry parameters.

    Attributes:
        max_attempts: Number of checks before giving up (>= 1).
        delay:        Seconds between checks (the first delay for 'exponential').
        strategy:     'fixed' interval or capped 'exponential' backoff.
        max_delay:    Upper bound for a single exponential delay.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=10, ge=1)
    delay: float = Field(default=5.0, ge=0)
    strategy: Literal["fixed", "exponential"] = "fixed"
    max_delay: float = Field(default=60.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.strategy == "fixed":
            return self.delay
        return min(self.delay * (2 ** (attempt - 1)), self.max_delay)

    @property
    def worst_case_seconds(self) -> float:
        """Total sleep time if every attempt fails."""
        return sum(self.delay_for(i) for i in range(1, self.max_attempts))


# Observed values from the operator scripts.
DEFAULT_BUDGETS: dict[str, RetryBudget] = {
    "port": RetryBudget(max_attempts=15, delay=5),
    "doris_port": RetryBudget(max_attempts=30, delay=10),
    "db_ready": RetryBudget(max_attempts=10, delay=5),
    "credential": RetryBudget(max_attempts=5, delay=5),
    "docker_daemon": RetryBudget(max_attempts=15, delay=2),
    "compose_service": RetryBudget(max_attempts=10, delay=3),
    "server_port": RetryBudget(max_attempts=30, delay=2),
}
