"""
Test project — a Cube server in docker, wired to a seeded test database.

    launch:   database up (skipped when healthy) → ports chosen → models,
              .env, sample queries, port files → compose up → REST port
              answering
    cleanup:  compose down (best-effort) → project directory removed
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from cubeops.adapters.registry import DriverRegistry
from cubeops.adapters.shell.network import find_available_port
from cubeops.core.context import RunContext
from cubeops.core.engine.provisioner import ExecutionPolicy, ResourceProvisioner
from cubeops.core.models.plan import RunReport
from cubeops.core.models.resource import ComposeService, HealthCheck, TcpPort
from cubeops.core.models.template import GeneratedFile
from cubeops.core.services import databases, templates

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "cubejs-test-project"
DEFAULT_IMAGE = "reorc/cubejs-official:latest"

# Name of the host as seen from inside the Cube container
DOCKER_HOST_GATEWAY = "host.docker.internal"

# Ports chosen by the last launch, kept in the project directory
REST_PORT_FILE = ".cubejs_port"
SQL_PORT_FILE = ".cubesql_port"


def project_dir(ctx: RunContext, project_name: str, override: str | Path | None = None) -> Path:
    if override:
        return ctx.resolve(override)
    return ctx.config.projects_path / project_name


def _read_port(path: Path) -> int | None:
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def recorded_ports(directory: Path) -> tuple[int | None, int | None]:
    """(REST, SQL) ports written by an earlier launch into ``directory``."""
    return _read_port(directory / REST_PORT_FILE), _read_port(directory / SQL_PORT_FILE)


def choose_ports(
    directory: Path,
    rest_port: int | None = None,
    sql_port: int | None = None,
) -> tuple[int, int]:
    """Pick the server's (REST, SQL) ports.

    Explicit ports win. Otherwise the ports recorded by an earlier launch
    are reused, so a running server keeps its ports. Failing both, the
    first unbound port from the defaults upward is taken.
    """
    recorded_rest, recorded_sql = recorded_ports(directory)
    rest = rest_port or recorded_rest or find_available_port(templates.CUBE_REST_PORT)
    sql = sql_port or recorded_sql or find_available_port(templates.CUBE_SQL_PORT)
    if rest != templates.CUBE_REST_PORT or sql != templates.CUBE_SQL_PORT:
        logger.info("Using REST port %d and SQL port %d", rest, sql)
    return rest, sql


def port_files(rest_port: int, sql_port: int) -> list[GeneratedFile]:
    return [
        GeneratedFile(path=REST_PORT_FILE, content=f"{rest_port}\n", reason="REST API port"),
        GeneratedFile(path=SQL_PORT_FILE, content=f"{sql_port}\n", reason="SQL API port"),
    ]


def server_resources(
    ctx: RunContext,
    project_name: str,
    directory: Path,
    image: str,
    db_type: str,
    *,
    rest_port: int = templates.CUBE_REST_PORT,
    sql_port: int = templates.CUBE_SQL_PORT,
) -> list:
    """The Cube server's [compose-service, tcp-port] resources."""
    profile = databases.get_profile(db_type, ctx)
    conn = profile.connection(host=DOCKER_HOST_GATEWAY)
    server = ComposeService(
        name=project_name,
        compose_dir=str(directory),
        compose_content=templates.cube_server_compose(
            project_name, image, conn, rest_port=rest_port, sql_port=sql_port,
        ),
        containers=[f"cubejs-{project_name}"],
        health=HealthCheck(port=rest_port),
        readiness=ctx.budget("server_port"),
    )
    sql = TcpPort(
        name=f"{project_name}-sql",
        port=sql_port,
        readiness=ctx.budget("server_port"),
        hint=f"Check the logs: docker logs cubejs-{project_name}",
    )
    return [server, sql]


def launch_project(
    ctx: RunContext,
    project_name: str = DEFAULT_PROJECT_NAME,
    db_type: str = "postgres",
    image: str = DEFAULT_IMAGE,
    *,
    directory: str | Path | None = None,
    rest_port: int | None = None,
    sql_port: int | None = None,
    force_reinstall_db: bool = False,
    registry: DriverRegistry | None = None,
) -> RunReport:
    """Bring up the database and a Cube server for it. Fail-fast.

    Ports left as None are chosen by ``choose_ports``.

    Returns:
        The database steps followed by the server steps. When the
        database fails nothing of the project is written.
    """
    report = databases.bring_up(ctx, db_type, force=force_reinstall_db, registry=registry)
    if not report.all_ok:
        return report

    root = project_dir(ctx, project_name, directory)
    rest_port, sql_port = choose_ports(root, rest_port, sql_port)
    profile = databases.get_profile(db_type, ctx)
    files = [
        templates.render_env_file(project_name, profile.connection(host=DOCKER_HOST_GATEWAY)),
        *templates.render_cube_models(),
        *templates.render_sample_queries(project_name, rest_port=rest_port, sql_port=sql_port),
        *port_files(rest_port, sql_port),
    ]
    templates.write_generated(files, ctx, root)

    resources = server_resources(
        ctx, project_name, root, image, db_type, rest_port=rest_port, sql_port=sql_port,
    )
    server_report = ResourceProvisioner(ctx, registry).provision_all(resources)
    report.results.extend(server_report.results)
    report.aborted = server_report.aborted
    return report


def cleanup_project(
    ctx: RunContext,
    project_name: str = DEFAULT_PROJECT_NAME,
    *,
    directory: str | Path | None = None,
    registry: DriverRegistry | None = None,
) -> RunReport:
    """Stop the project's server and delete its directory (after confirmation)."""
    root = project_dir(ctx, project_name, directory)
    if not root.exists():
        logger.warning("Project directory does not exist: %s", root)

    ctx.confirm(f"Remove the {project_name} container and delete {root}?")

    resources = server_resources(ctx, project_name, root, DEFAULT_IMAGE, "postgres")
    provisioner = ResourceProvisioner(ctx, registry, policy=ExecutionPolicy.BEST_EFFORT)
    report = provisioner.remove_all(resources)

    if root.exists():
        if ctx.dry_run:
            logger.info("[dry-run] would remove %s", root)
        else:
            logger.info("Removing %s", root)
            shutil.rmtree(root)
    return report
