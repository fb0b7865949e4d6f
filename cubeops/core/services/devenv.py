"""
Development workflow — set up and debug a source checkout.

    setup_playground     rust → yarn install → frontend build → tsc watch
                         (left running) → SQL API build
    link_packages        test project uses the checkout's core packages
    write_launch_config  .vscode/launch.json in the checkout
    start_debug_session  free ports → link → tsc watch (background)
                         → cargo build → SQL API (background)
                         → dev server with the inspector (foreground)

A debug session's background processes are terminated when the
foreground server exits, fails or is interrupted. The watcher started by
setup_playground is left running.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from cubeops.adapters.registry import DriverRegistry
from cubeops.adapters.shell.network import free_port
from cubeops.core.context import RunContext
from cubeops.core.engine.provisioner import ExecutionPolicy, ResourceProvisioner
from cubeops.core.errors import UsageError
from cubeops.core.models.plan import RunReport
from cubeops.core.models.resource import PackageLink
from cubeops.core.services.repository import RepositoryLayout
from cubeops.core.services.templates import render_launch_config, write_generated
from cubeops.core.services.toolchain import ensure_rust

logger = logging.getLogger(__name__)

# package name → directory under packages/
DEBUG_PACKAGES: dict[str, str] = {
    "@cubejs-backend/api-gateway": "cubejs-api-gateway",
    "@cubejs-backend/schema-compiler": "cubejs-schema-compiler",
    "@cubejs-backend/query-orchestrator": "cubejs-query-orchestrator",
    "@cubejs-backend/server-core": "cubejs-server-core",
    "@cubejs-backend/shared": "cubejs-backend-shared",
    "@cubejs-backend/base-driver": "cubejs-base-driver",
}

INSPECTOR_PORT = 9229
DEBUG_PORTS = (INSPECTOR_PORT, 4000, 15432)

# The dev server runs until interrupted
_SERVER_TIMEOUT = 7 * 24 * 3600.0


def default_repo_dir(ctx: RunContext) -> Path:
    """Checkout of the develop branch."""
    repo = ctx.config.repository
    return RepositoryLayout.for_name(ctx, repo.name).branch_dir(repo.develop_branch)


def _require_dir(path: Path, what: str) -> Path:
    if not path.is_dir():
        raise UsageError(f"{what} not found at {path}")
    return path


# ── Package links ───────────────────────────────────────────────


def link_resources(
    repo_dir: Path,
    project_dir: Path,
    packages: dict[str, str] | None = None,
) -> list[PackageLink]:
    return [
        PackageLink(
            name=name,
            package_name=name,
            package_dir=str(repo_dir / "packages" / directory),
            project_dir=str(project_dir),
        )
        for name, directory in (packages or DEBUG_PACKAGES).items()
    ]


def link_packages(
    ctx: RunContext,
    repo_dir: Path,
    project_dir: Path,
    packages: dict[str, str] | None = None,
    *,
    registry: DriverRegistry | None = None,
) -> RunReport:
    """Link the checkout's packages into the project. Best-effort."""
    _require_dir(repo_dir, "Source checkout")
    _require_dir(project_dir, "Test project")
    provisioner = ResourceProvisioner(ctx, registry, policy=ExecutionPolicy.BEST_EFFORT)
    return provisioner.provision_all(link_resources(repo_dir, project_dir, packages))


def unlink_packages(
    ctx: RunContext,
    repo_dir: Path,
    project_dir: Path,
    packages: dict[str, str] | None = None,
    *,
    registry: DriverRegistry | None = None,
) -> RunReport:
    provisioner = ResourceProvisioner(ctx, registry, policy=ExecutionPolicy.BEST_EFFORT)
    return provisioner.remove_all(link_resources(repo_dir, project_dir, packages))


# ── IDE ─────────────────────────────────────────────────────────


def write_launch_config(
    ctx: RunContext,
    repo_dir: Path,
    *,
    test_project_dir: Path | None = None,
) -> Path:
    """Write ``.vscode/launch.json`` into the checkout.

    An existing file is only replaced after confirmation.
    """
    _require_dir(repo_dir, "Source checkout")
    target = repo_dir / ".vscode" / "launch.json"
    if target.exists():
        ctx.confirm(f"Overwrite the existing launch configuration at {target}?")

    launch = render_launch_config(
        test_project_dir=str(test_project_dir) if test_project_dir else None,
        overwrite=True,
    )
    write_generated(launch, ctx, repo_dir)
    return target


# ── Debug session ───────────────────────────────────────────────


def start_debug_session(
    ctx: RunContext,
    repo_dir: Path,
    project_dir: Path,
    *,
    ports: tuple[int, ...] = DEBUG_PORTS,
    link: bool = True,
    build_sql: bool = True,
    registry: DriverRegistry | None = None,
) -> int:
    """Run the dev server under the inspector with its helpers around it.

    Blocks until the server exits.

    Returns:
        The dev server's exit code.
    """
    _require_dir(repo_dir, "Source checkout")
    _require_dir(project_dir, "Test project")
    sql_dir = sql_api_dir(repo_dir)
    sql_binary = sql_api_binary(repo_dir)

    for port in ports:
        killed = free_port(port, ctx)
        if killed:
            logger.info("Freed port %d (PIDs %s)", port, ", ".join(map(str, killed)))

    if link:
        link_packages(ctx, repo_dir, project_dir, registry=registry)

    tasks = ctx.tasks
    with tasks:
        tasks.install_handlers()
        tasks.spawn(
            "TypeScript watch",
            ["yarn", "tsc:watch"],
            cwd=repo_dir,
            log_path=repo_dir / "typescript-watch.log",
        )

        if build_sql:
            logger.info("Building the SQL API with debug symbols")
            ctx.runner.check("cargo", ["build"], cwd=sql_dir, capture=False, timeout=_SERVER_TIMEOUT)
        if not ctx.dry_run and not sql_binary.is_file():
            raise UsageError(f"SQL API binary not found at {sql_binary}; run `cargo build` in {sql_dir}")

        tasks.spawn(
            "SQL API",
            [str(sql_binary)],
            cwd=sql_dir,
            env={"RUST_BACKTRACE": "1", "RUST_LOG": "trace"},
            log_path=repo_dir / "cubesql.log",
        )

        logger.info("Starting the dev server; attach a debugger to port %d", INSPECTOR_PORT)
        result = ctx.runner.run(
            "yarn",
            ["dev"],
            cwd=project_dir,
            env={
                "NODE_OPTIONS": f"--inspect-brk=0.0.0.0:{INSPECTOR_PORT}",
                "CUBEJS_DEV_MODE": "true",
                "CUBEJS_LOG_LEVEL": "trace",
            },
            capture=False,
            timeout=_SERVER_TIMEOUT,
        )
    return result.exit_code


# ── Playground setup ────────────────────────────────────────────


@dataclass(frozen=True)
class SetupStep:
    """Outcome of one playground setup step."""

    name: str
    action: Literal["skipped", "ran"]
    detail: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "action": self.action, "detail": self.detail}


INSTALL_STAMP = ".yarn_install_timestamp"
PLAYGROUND_INDEX = Path("packages") / "cubejs-playground" / "build" / "index.html"


def sql_api_dir(repo_dir: Path) -> Path:
    return repo_dir / "rust" / "cubesql"


def sql_api_binary(repo_dir: Path) -> Path:
    return sql_api_dir(repo_dir) / "target" / "debug" / "cubesqld"


def _newer_sources(root: Path, pattern: str, reference: Path) -> bool:
    """True if any file under ``root`` matching ``pattern`` is newer than ``reference``."""
    if not root.is_dir():
        return False
    built = reference.stat().st_mtime
    return any(
        p.stat().st_mtime > built
        for p in root.rglob(pattern)
        if "node_modules" not in p.parts and p.is_file()
    )


def install_dependencies(ctx: RunContext, repo_dir: Path) -> SetupStep:
    """``yarn install`` unless node_modules is newer than yarn.lock."""
    stamp = repo_dir / INSTALL_STAMP
    lock = repo_dir / "yarn.lock"
    if (
        (repo_dir / "node_modules").is_dir()
        and stamp.is_file()
        and lock.is_file()
        and lock.stat().st_mtime < stamp.stat().st_mtime
    ):
        return SetupStep("dependencies", "skipped", "up to date with yarn.lock")

    logger.info("Installing dependencies in %s", repo_dir)
    ctx.runner.check("yarn", ["install"], cwd=repo_dir, capture=False, timeout=_SERVER_TIMEOUT)
    if not ctx.dry_run:
        stamp.touch()
    return SetupStep("dependencies", "ran")


def build_frontend(ctx: RunContext, repo_dir: Path) -> SetupStep:
    """Build the packages and the playground unless the build is newer than every .tsx."""
    index = repo_dir / PLAYGROUND_INDEX
    if index.is_file() and not _newer_sources(repo_dir / "packages", "*.tsx", index):
        return SetupStep("frontend", "skipped", "playground build is current")

    logger.info("Building frontend packages")
    ctx.runner.check("yarn", ["build"], cwd=repo_dir, capture=False, timeout=_SERVER_TIMEOUT)
    logger.info("Building the playground")
    ctx.runner.check(
        "yarn", ["build"],
        cwd=repo_dir / "packages" / "cubejs-playground",
        capture=False,
        timeout=_SERVER_TIMEOUT,
    )
    return SetupStep("frontend", "ran")


def start_typescript_watch(ctx: RunContext, repo_dir: Path) -> SetupStep:
    """Leave ``yarn tsc:watch`` running in the background (one per host)."""
    if ctx.runner.succeeds("pgrep", ["-f", "tsc:watch"]):
        return SetupStep("typescript watch", "skipped", "already running")

    task = ctx.tasks.spawn(
        "TypeScript watch",
        ["yarn", "tsc:watch"],
        cwd=repo_dir,
        log_path=repo_dir / "typescript-watch.log",
    )
    return SetupStep("typescript watch", "ran", f"PID {task.pid}" if task else "")


def build_sql_api(ctx: RunContext, repo_dir: Path) -> SetupStep:
    """``cargo build`` the SQL API unless the binary is newer than every .rs source."""
    sql_dir = sql_api_dir(repo_dir)
    binary = sql_api_binary(repo_dir)
    if binary.is_file() and not _newer_sources(sql_dir / "src", "*.rs", binary):
        return SetupStep("sql api", "skipped", "binary is current")

    logger.info("Building the SQL API")
    ctx.runner.check("cargo", ["build"], cwd=sql_dir, capture=False, timeout=_SERVER_TIMEOUT)
    return SetupStep("sql api", "ran")


def setup_playground(ctx: RunContext, repo_dir: Path) -> list[SetupStep]:
    """Prepare a checkout for playground development.

    Rust → yarn install → frontend build → tsc watch (left running)
    → SQL API build. Steps whose outputs are current are skipped.
    """
    _require_dir(repo_dir, "Source checkout")
    rust = ensure_rust(ctx)
    logger.info("Setting up the playground in %s", repo_dir)
    return [
        SetupStep("rust", "ran" if rust.action == "installed" else "skipped", rust.version),
        install_dependencies(ctx, repo_dir),
        build_frontend(ctx, repo_dir),
        start_typescript_watch(ctx, repo_dir),
        build_sql_api(ctx, repo_dir),
    ]
