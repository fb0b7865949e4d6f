"""
Disposable test databases — PostgreSQL, MySQL and Apache Doris.

Each database kind has a profile (image, container names, ports,
credentials, readiness check). Bringing one up provisions three
resources in order:

    compose-service   containers running and answering their ping
    tcp-port          the client port reachable from the host
    db-schema         seed tables loaded into the ``test`` database

Doris starts with an empty root password; between the port and the
schema step it is rotated to the profile password (a failed rotation
is only a warning: the old password keeps working).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal

from cubeops.adapters.db.schema import run_sql
from cubeops.adapters.registry import DriverRegistry
from cubeops.core.context import RunContext
from cubeops.core.engine.provisioner import ExecutionPolicy, ResourceProvisioner
from cubeops.core.engine.retry import await_condition
from cubeops.core.errors import ReadinessTimeoutError, UsageError
from cubeops.core.models.plan import RunReport
from cubeops.core.models.resource import ComposeService, DbSchema, HealthCheck, TcpPort

logger = logging.getLogger(__name__)

DbType = Literal["postgres", "mysql", "doris"]
DB_TYPES: tuple[str, ...] = ("postgres", "mysql", "doris")

# Database the seed tables are loaded into
SEED_DATABASE = "test"


@dataclass(frozen=True)
class DbConnection:
    """How a client reaches a database."""

    db_type: str
    host: str
    port: int
    database: str
    user: str
    password: str

    def cube_env(self) -> dict[str, str]:
        """``CUBEJS_DB_*`` variables for the Cube server."""
        return {
            "CUBEJS_DB_TYPE": self.db_type,
            "CUBEJS_DB_HOST": self.host,
            "CUBEJS_DB_PORT": str(self.port),
            "CUBEJS_DB_NAME": self.database,
            "CUBEJS_DB_USER": self.user,
            "CUBEJS_DB_PASS": self.password,
        }

    def client_command(self) -> str:
        if self.db_type == "postgres":
            return f"psql -h {self.host} -p {self.port} -U {self.user} -d {self.database}"
        return f"mysql -h{self.host} -P{self.port} -u{self.user} -p{self.password} {self.database}"


@dataclass(frozen=True)
class DatabaseProfile:
    """Everything needed to run one database kind in docker."""

    kind: str
    version: str
    port: int
    user: str
    password: str
    database: str
    data_root: str
    containers: tuple[str, ...]
    port_budget: str = "port"
    initial_password: str | None = None     # rotated to ``password`` after start
    extra_ports: dict[str, int] = field(default_factory=dict)

    @property
    def ready_command(self) -> tuple[str, ...]:
        """Ping run inside the container (empty = port check only)."""
        if self.kind == "postgres":
            return ("pg_isready", "-U", self.user)
        if self.kind == "mysql":
            return ("mysqladmin", f"-u{self.user}", f"-p{self.password}", "ping")
        return ()

    @property
    def root(self) -> Path:
        return Path(self.data_root).expanduser()

    @property
    def compose_dir(self) -> Path:
        return self.root / "compose"

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def log_dir(self) -> Path:
        return self.root / "log"

    @property
    def data_dirs(self) -> list[str]:
        if self.kind == "doris":
            return [str(self.data_dir / "fe"), str(self.data_dir / "be"),
                    str(self.log_dir / "fe"), str(self.log_dir / "be")]
        return [str(self.data_dir)]

    def connection(self, host: str = "127.0.0.1", database: str = SEED_DATABASE) -> DbConnection:
        return DbConnection(
            db_type=self.kind,
            host=host,
            port=self.port,
            database=database,
            user=self.user,
            password=self.password,
        )


PROFILES: dict[str, DatabaseProfile] = {
    "postgres": DatabaseProfile(
        kind="postgres",
        version="16.1",
        port=5432,
        user="postgres",
        password="postgres",
        database="postgres",
        data_root="~/.local/postgres",
        containers=("postgres",),
    ),
    "mysql": DatabaseProfile(
        kind="mysql",
        version="8.0",
        port=3306,
        user="root",
        password="mysql",
        database="mysql",
        data_root="~/.local/mysql",
        containers=("mysql",),
    ),
    "doris": DatabaseProfile(
        kind="doris",
        version="3.0.4",
        port=9030,
        user="root",
        password="root",
        database="information_schema",
        data_root="~/.local/doris",
        containers=("doris-fe", "doris-be"),
        port_budget="doris_port",
        initial_password="",
        extra_ports={"fe_http": 8030, "be_http": 8040},
    ),
}


def get_profile(kind: str, ctx: RunContext | None = None) -> DatabaseProfile:
    """Built-in profile for ``kind`` with cubeops.yml overrides applied."""
    if kind not in PROFILES:
        raise UsageError(f"Unsupported database type: {kind} (choose from {', '.join(DB_TYPES)})")
    profile = PROFILES[kind]
    if ctx is None:
        return profile

    override = ctx.config.database(kind)
    changes = {k: v for k, v in override.model_dump().items() if v is not None}
    return replace(profile, **changes) if changes else profile


# ── Resources ───────────────────────────────────────────────────


def database_resources(profile: DatabaseProfile, ctx: RunContext) -> list:
    """The [compose-service, tcp-port, db-schema] resources for a profile."""
    from cubeops.core.services.templates import database_compose

    if profile.kind == "doris":
        health = HealthCheck(port=profile.port)
        ready_budget = ctx.budget(profile.port_budget)
    else:
        health = HealthCheck(command=list(profile.ready_command))
        ready_budget = ctx.budget("db_ready")

    service = ComposeService(
        name=profile.kind,
        compose_dir=str(profile.compose_dir),
        compose_content=database_compose(profile),
        containers=list(profile.containers),
        health=health,
        data_dirs=profile.data_dirs,
        readiness=ready_budget,
    )
    port = TcpPort(
        name=profile.kind,
        port=profile.port,
        readiness=ctx.budget(profile.port_budget),
        hint=f"Check the logs: docker compose -f {profile.compose_dir}/docker-compose.yml logs",
    )
    return [service, port, schema_resource(profile, ctx)]


def schema_resource(profile: DatabaseProfile, ctx: RunContext) -> DbSchema:
    # Doris images ship no client: use the host's mysql over TCP
    container = "" if profile.kind == "doris" else profile.containers[0]
    return DbSchema(
        name=profile.kind,
        db_type=profile.kind,
        container=container,
        database=SEED_DATABASE,
        user=profile.user,
        password=profile.password,
        port=profile.port,
        readiness=ctx.budget("db_ready"),
    )


# ── Operations ──────────────────────────────────────────────────


def bring_up(
    ctx: RunContext,
    kind: str,
    *,
    force: bool = False,
    seed: bool = True,
    registry: DriverRegistry | None = None,
) -> RunReport:
    """Start a database and load the seed tables. Fail-fast.

    ``force`` recreates a healthy database from scratch (volumes and
    data directories are removed), after confirmation.
    """
    profile = get_profile(kind, ctx)
    if force:
        ctx.confirm(f"Delete the existing {kind} database and its data under {profile.root}?")

    service, port, schema = database_resources(profile, ctx)
    provisioner = ResourceProvisioner(ctx, registry, force=force)

    report = provisioner.provision_all([service, port])
    if not report.all_ok or not seed:
        return report

    if profile.initial_password is not None:
        rotate_root_password(profile, ctx)

    schema_report = provisioner.provision_all([schema])
    report.results.extend(schema_report.results)
    report.aborted = schema_report.aborted
    return report


def seed_database(
    ctx: RunContext,
    kind: str,
    *,
    force: bool = False,
    registry: DriverRegistry | None = None,
) -> RunReport:
    """(Re)load the seed tables into an already running database."""
    profile = get_profile(kind, ctx)
    provisioner = ResourceProvisioner(ctx, registry, force=force)
    return provisioner.provision_all([schema_resource(profile, ctx)])


def tear_down(
    ctx: RunContext,
    kind: str,
    *,
    remove_data: bool = False,
    registry: DriverRegistry | None = None,
) -> RunReport:
    """Stop a database. Best-effort; data is kept unless ``remove_data``."""
    profile = get_profile(kind, ctx)
    if remove_data:
        ctx.confirm(f"Permanently delete {kind} data under {profile.root}?")

    service, _, _ = database_resources(profile, ctx)
    service = service.model_copy(update={"remove_volumes": remove_data})
    provisioner = ResourceProvisioner(ctx, registry, policy=ExecutionPolicy.BEST_EFFORT)
    return provisioner.remove_all([service])


def rotate_root_password(profile: DatabaseProfile, ctx: RunContext) -> bool:
    """Change the admin password from ``initial_password`` to ``password``.

    Returns True when the target password works afterwards. Never raises
    for a failed rotation: it is logged as a warning.
    """
    target = DbSchema(
        name=profile.kind, db_type=profile.kind, database="", user=profile.user,
        password=profile.password, port=profile.port,
    )
    if run_sql(target, "SELECT 1;\n", ctx, database="", mutating=False).ok:
        logger.info("%s password already set", profile.user)
        return True

    initial = target.model_copy(update={"password": profile.initial_password or ""})
    statement = f"ALTER USER '{profile.user}' IDENTIFIED BY '{profile.password}';\n"

    def attempt() -> bool:
        return run_sql(initial, statement, ctx, database="").ok

    try:
        await_condition(
            attempt,
            ctx.budget("credential"),
            describe=f"{profile.kind} root password change",
            sleep=ctx.sleep or time.sleep,
        )
    except ReadinessTimeoutError as e:
        logger.warning(
            "%s. Set it manually: mysql -h127.0.0.1 -P%d -u%s -e \"%s\"",
            e, profile.port, profile.user, statement.strip(),
        )
        return False
    logger.info("%s password has been set", profile.user)
    return True


def connection_summary(profile: DatabaseProfile) -> list[str]:
    """Human-readable connection details printed after bring-up."""
    conn = profile.connection()
    lines = [
        f"Host:     {conn.host}",
        f"Port:     {conn.port}",
        f"User:     {conn.user}",
        f"Password: {conn.password}",
        f"Database: {conn.database}",
        f"Connect:  {conn.client_command()}",
    ]
    for label, port in profile.extra_ports.items():
        lines.append(f"{label.replace('_', ' ').upper()}: http://127.0.0.1:{port}")
    return lines
