"""
Resource models — the things the provisioning engine manages.

A resource is a tagged variant: the ``kind`` field selects the model
and each model carries only the fields its kind needs. Pydantic's
discriminated union does the dispatch when loading from dicts/YAML:

    TypeAdapter(Resource).validate_python({"kind": "tcp-port", ...})

Resources hold the *desired* state. Observed state is never stored on
the resource; it is re-probed from the external system every time.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from cubeops.core.models.budget import RetryBudget


class ResourceKind(StrEnum):
    """Resource kind tags."""

    GIT_WORKTREE = "git-worktree"
    COMPOSE_SERVICE = "compose-service"
    TCP_PORT = "tcp-port"
    PACKAGE_LINK = "package-link"
    DOCKER_TAG = "docker-tag"
    DB_SCHEMA = "db-schema"


class _ResourceBase(BaseModel):
    """Fields shared by every resource kind."""

    model_config = ConfigDict(frozen=True)

    name: str
    readiness: RetryBudget | None = None   # None = verify once, no polling

    @property
    def label(self) -> str:
        return f"{self.kind}:{self.name}"  # type: ignore[attr-defined]


class GitWorktree(_ResourceBase):
    """A git worktree checked out on a given branch.

    ``repo_dir`` is any existing checkout of the repository; worktree
    commands run there. ``start_point`` is the ref a missing branch is
    created from (None = the branch must already exist or be fetchable).
    """

    kind: Literal["git-worktree"] = "git-worktree"
    path: str
    branch: str
    repo_dir: str
    start_point: str | None = None
    delete_branch_on_teardown: bool = False


class HealthCheck(BaseModel):
    """How to decide a running container is actually usable.

    Exactly one of ``port`` (TCP connect) or ``command`` (run via
    ``docker exec <container>``) is normally set. Neither = running is enough.
    """

    model_config = ConfigDict(frozen=True)

    port: int | None = None
    host: str = "127.0.0.1"
    command: list[str] = Field(default_factory=list)


class ComposeService(_ResourceBase):
    """A docker compose project whose containers must be running.

    The compose file is rendered from ``compose_content`` into
    ``compose_dir/docker-compose.yml`` on create.
    """

    kind: Literal["compose-service"] = "compose-service"
    compose_dir: str
    compose_content: str
    containers: list[str]
    health: HealthCheck = Field(default_factory=HealthCheck)
    data_dirs: list[str] = Field(default_factory=list)
    remove_volumes: bool = True
    env: dict[str, str] = Field(default_factory=dict)


class TcpPort(_ResourceBase):
    """A TCP port that must accept connections.

    Nothing is created for a port; it becomes healthy as a side effect of
    some other resource. Create is therefore a no-op and the readiness
    budget does the waiting.
    """

    kind: Literal["tcp-port"] = "tcp-port"
    host: str = "127.0.0.1"
    port: int
    timeout: float = 2.0
    hint: str = ""


class PackageLink(_ResourceBase):
    """A linked node package: ``<project_dir>/node_modules/<package>`` → ``package_dir``."""

    kind: Literal["package-link"] = "package-link"
    package_name: str
    package_dir: str
    project_dir: str

    @property
    def link_path(self) -> str:
        return f"{self.project_dir}/node_modules/{self.package_name}"


class DockerTag(_ResourceBase):
    """An image reference ``image:tag`` that must exist.

    Created by tagging ``source`` (another local image reference).
    With ``remote=True`` the registry's tag listing also counts as present.
    """

    kind: Literal["docker-tag"] = "docker-tag"
    image: str
    tag: str = "latest"
    source: str | None = None
    remote: bool = False

    @property
    def reference(self) -> str:
        return f"{self.image}:{self.tag}"


class DbSchema(_ResourceBase):
    """Seed tables loaded into a database running in a container."""

    kind: Literal["db-schema"] = "db-schema"
    db_type: Literal["postgres", "mysql", "doris"]
    container: str = ""                # empty = use the host client over TCP
    database: str
    user: str
    password: str = ""
    host: str = "127.0.0.1"
    port: int | None = None
    tables: list[str] = Field(
        default_factory=lambda: ["products", "orders", "order_items"],
    )
    seed_sql: str = ""


Resource = Annotated[
    Union[GitWorktree, ComposeService, TcpPort, PackageLink, DockerTag, DbSchema],
    Field(discriminator="kind"),
]


class ObservedState(BaseModel):
    """Result of probing a resource.

    ``degraded`` covers partial state (a directory that is not a worktree,
    a container that is running but unhealthy). Degraded always routes to
    Recreate rather than Repair.
    """

    model_config = ConfigDict(frozen=True)

    status: Literal["absent", "healthy", "degraded"]
    reason: str = ""

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    @classmethod
    def absent(cls, reason: str = "") -> ObservedState:
        return cls(status="absent", reason=reason)

    @classmethod
    def present(cls) -> ObservedState:
        return cls(status="healthy")

    @classmethod
    def degraded(cls, reason: str) -> ObservedState:
        return cls(status="degraded", reason=reason)

    def __str__(self) -> str:
        return f"{self.status} ({self.reason})" if self.reason else self.status
