"""
Toolchain service — make sure the build host has what the build needs.

Every step is check-then-install, so running it twice installs nothing
the second time:

    apt packages   dpkg -s <pkg>           → apt-get install -y <pkg>
    Node.js        node -v starts with vN  → nodesource setup + apt-get install nodejs
    yarn           yarn on PATH            → npm install -g yarn
    rust           cargo on PATH           → rustup (user install, no sudo)
    docker         docker on PATH          → docker-ce from the Docker apt repo
    daemon         docker info             → systemctl start docker, then wait
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from cubeops.core.context import RunContext
from cubeops.core.engine.retry import await_condition
from cubeops.core.errors import ExternalToolError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolStatus:
    """What happened to one tool."""

    name: str
    action: Literal["skipped", "installed"]
    version: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "action": self.action, "version": self.version}


# ── Install recipes ─────────────────────────────────────────────

_RUSTUP_SCRIPT = "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh -s -- -y"

_DOCKER_PREREQS = ["apt-transport-https", "ca-certificates", "curl", "gnupg", "lsb-release"]
_DOCKER_PACKAGES = [
    "docker-ce", "docker-ce-cli", "containerd.io",
    "docker-buildx-plugin", "docker-compose-plugin",
]
_DOCKER_REPO_SCRIPT = (
    "mkdir -p /etc/apt/keyrings && "
    "curl -fsSL https://download.docker.com/linux/ubuntu/gpg "
    "| gpg --dearmor --yes -o /etc/apt/keyrings/docker.gpg && "
    "chmod a+r /etc/apt/keyrings/docker.gpg && "
    'echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.gpg] '
    "https://download.docker.com/linux/ubuntu $(. /etc/os-release && echo $VERSION_CODENAME) stable\" "
    "> /etc/apt/sources.list.d/docker.list"
)


def _sudo(ctx: RunContext, command: str, args: list[str]) -> None:
    """Run a privileged command (sudo is skipped when already root)."""
    if os.geteuid() == 0:
        ctx.runner.check(command, args, capture=False)
    else:
        ctx.runner.check("sudo", [command, *args], capture=False)


def _apt_install(ctx: RunContext, packages: list[str]) -> None:
    _sudo(ctx, "apt-get", ["install", "-y", *packages])


# ── Checks ──────────────────────────────────────────────────────


def package_installed(ctx: RunContext, package: str) -> bool:
    return ctx.runner.succeeds("dpkg", ["-s", package])


def node_version(ctx: RunContext) -> str:
    """Installed Node.js version (``v20.11.1``), or empty."""
    if not ctx.runner.available("node"):
        return ""
    result = ctx.runner.run("node", ["-v"], mutating=False)
    return result.stdout if result.ok else ""


def docker_running(ctx: RunContext) -> bool:
    return ctx.runner.succeeds("docker", ["info"])


def cargo_bin_dir() -> Path:
    """Where rustup puts cargo and rustc ($CARGO_HOME/bin, default ~/.cargo/bin)."""
    home = os.environ.get("CARGO_HOME")
    return (Path(home) if home else Path.home() / ".cargo") / "bin"


def put_cargo_on_path() -> bool:
    """Prepend the cargo bin directory to this process's PATH.

    The same effect as sourcing ~/.cargo/env: commands run later (and
    their children) find cargo. Returns True if PATH changed.
    """
    bin_dir = cargo_bin_dir()
    path = os.environ.get("PATH", "")
    if not bin_dir.is_dir() or str(bin_dir) in path.split(os.pathsep):
        return False
    os.environ["PATH"] = os.pathsep.join([str(bin_dir), path]) if path else str(bin_dir)
    return True


def rust_version(ctx: RunContext) -> str:
    if not ctx.runner.available("rustc"):
        return ""
    result = ctx.runner.run("rustc", ["--version"], mutating=False)
    return result.stdout if result.ok else ""


# ── Install steps ───────────────────────────────────────────────


def ensure_system_packages(ctx: RunContext, packages: list[str]) -> list[ToolStatus]:
    missing = [p for p in packages if not package_installed(ctx, p)]
    statuses = [ToolStatus(p, "skipped") for p in packages if p not in missing]
    if missing:
        logger.info("Installing system packages: %s", ", ".join(missing))
        _sudo(ctx, "apt-get", ["update"])
        _apt_install(ctx, missing)
        statuses += [ToolStatus(p, "installed") for p in missing]
    return statuses


def ensure_node(ctx: RunContext, major: str) -> ToolStatus:
    current = node_version(ctx)
    if current.startswith(f"v{major}."):
        logger.info("Node.js %s already installed", current)
        return ToolStatus("node", "skipped", current)

    logger.info("Installing Node.js %s.x (found: %s)", major, current or "none")
    _sudo(ctx, "bash", ["-c", f"curl -fsSL https://deb.nodesource.com/setup_{major}.x | bash -"])
    _apt_install(ctx, ["nodejs"])
    return ToolStatus("node", "installed", node_version(ctx))


def ensure_yarn(ctx: RunContext) -> ToolStatus:
    if ctx.runner.available("yarn"):
        return ToolStatus("yarn", "skipped")
    logger.info("Installing yarn")
    _sudo(ctx, "npm", ["install", "-g", "yarn"])
    return ToolStatus("yarn", "installed")


def ensure_rust(ctx: RunContext) -> ToolStatus:
    put_cargo_on_path()
    if ctx.runner.available("cargo"):
        return ToolStatus("rust", "skipped", rust_version(ctx))

    logger.info("Installing Rust with rustup")
    ctx.runner.check("bash", ["-c", _RUSTUP_SCRIPT], capture=False)
    put_cargo_on_path()
    return ToolStatus("rust", "installed", rust_version(ctx))


def ensure_docker(ctx: RunContext) -> ToolStatus:
    """Install Docker Engine if missing, then wait for the daemon."""
    action: Literal["skipped", "installed"] = "skipped"
    if not ctx.runner.available("docker"):
        logger.info("Installing Docker Engine")
        _sudo(ctx, "apt-get", ["update"])
        _apt_install(ctx, _DOCKER_PREREQS)
        _sudo(ctx, "bash", ["-c", _DOCKER_REPO_SCRIPT])
        _sudo(ctx, "apt-get", ["update"])
        _apt_install(ctx, _DOCKER_PACKAGES)
        _sudo(ctx, "systemctl", ["enable", "docker"])
        user = os.environ.get("USER")
        if user and user != "root":
            _sudo(ctx, "usermod", ["-aG", "docker", user])
            logger.warning("Log out and back in for the docker group change to take effect")
        action = "installed"

    wait_for_docker(ctx)
    return ToolStatus("docker", action)


def wait_for_docker(ctx: RunContext) -> int:
    """Start the daemon if needed and wait until ``docker info`` succeeds."""
    if ctx.dry_run or docker_running(ctx):
        return 1

    logger.warning("Docker daemon is not running, starting it")
    try:
        _sudo(ctx, "systemctl", ["start", "docker"])
    except ExternalToolError as e:
        logger.warning("systemctl start docker failed: %s", e)

    return await_condition(
        lambda: docker_running(ctx),
        ctx.budget("docker_daemon"),
        describe="docker daemon",
        hint="Check `systemctl status docker`",
        sleep=ctx.sleep or time.sleep,
    )


def ensure_toolchain(
    ctx: RunContext,
    *,
    packages: list[str] | None = None,
    node_major: str | None = None,
    rust: bool = False,
) -> list[ToolStatus]:
    """Run every install step in order. Stops at the first failure.

    Rust is only needed to build the SQL API from source, so it is
    installed when ``rust`` is set.
    """
    config = ctx.config
    statuses = ensure_system_packages(ctx, packages if packages is not None else config.system_packages)
    statuses.append(ensure_node(ctx, node_major or config.node_version))
    statuses.append(ensure_yarn(ctx))
    if rust:
        statuses.append(ensure_rust(ctx))
    statuses.append(ensure_docker(ctx))
    installed = [s.name for s in statuses if s.action == "installed"]
    logger.info("Toolchain ready (%s)", f"installed: {', '.join(installed)}" if installed else "nothing to install")
    return statuses
