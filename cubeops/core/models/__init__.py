"""
Domain models — Pydantic types for the provisioning engine.

All models are re-exported here for convenient access:

    from cubeops.core.models import Resource, ProvisionPlan, ExecutionResult, VersionTag
"""

from cubeops.core.models.budget import DEFAULT_BUDGETS, RetryBudget
from cubeops.core.models.plan import (
    ExecutionResult,
    PlanStep,
    ProvisionAction,
    ProvisionPlan,
    RunReport,
)
from cubeops.core.models.resource import (
    ComposeService,
    DbSchema,
    DockerTag,
    GitWorktree,
    HealthCheck,
    ObservedState,
    PackageLink,
    Resource,
    ResourceKind,
    TcpPort,
)
from cubeops.core.models.template import GeneratedFile
from cubeops.core.models.version import VersionTag, next_version, semantic_tags

__all__ = [
    "DEFAULT_BUDGETS",
    "ComposeService",
    "DbSchema",
    "DockerTag",
    "ExecutionResult",
    "GeneratedFile",
    "GitWorktree",
    "HealthCheck",
    "ObservedState",
    "PackageLink",
    "PlanStep",
    "ProvisionAction",
    "ProvisionPlan",
    "Resource",
    "ResourceKind",
    "RetryBudget",
    "RunReport",
    "TcpPort",
    "VersionTag",
    "next_version",
    "semantic_tags",
]
