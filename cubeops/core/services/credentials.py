"""
Registry credentials and ``docker login``.

Resolution order:
    1. DOCKER_USERNAME / DOCKER_PASSWORD from the environment
    2. an interactive prompt, when stdin is a terminal
    3. otherwise UsageError (nobody can answer a prompt)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from cubeops.core.context import RunContext
from cubeops.core.errors import ExternalToolError, UsageError

logger = logging.getLogger(__name__)

ENV_USERNAME = "DOCKER_USERNAME"
ENV_PASSWORD = "DOCKER_PASSWORD"


@dataclass(frozen=True)
class RegistryCredentials:
    username: str
    password: str
    source: str = "env"   # "env" or "prompt"

    def __repr__(self) -> str:
        return f"RegistryCredentials(username={self.username!r}, source={self.source!r})"


def registry_host(image: str) -> str | None:
    """Registry host of an image name, or None for Docker Hub."""
    first, _, rest = image.partition("/")
    if rest and ("." in first or ":" in first or first == "localhost"):
        return first
    return None


def resolve_credentials(ctx: RunContext, registry: str | None = None) -> RegistryCredentials:
    """Find credentials for ``registry`` (None = Docker Hub)."""
    username = os.environ.get(ENV_USERNAME, "")
    password = os.environ.get(ENV_PASSWORD, "")
    if username and password:
        logger.debug("Using registry credentials from %s/%s", ENV_USERNAME, ENV_PASSWORD)
        return RegistryCredentials(username, password, source="env")

    where = registry or "Docker Hub"
    if not ctx.interactive:
        raise UsageError(
            f"Registry credentials for {where} are required. "
            f"Set {ENV_USERNAME} and {ENV_PASSWORD}, or run from an interactive terminal."
        )

    username = username or ctx.prompt_fn(f"Username for {where}")
    password = password or ctx.prompt_fn(f"Password for {where}", hide_input=True)
    if not username or not password:
        raise UsageError("Username and password must not be empty")
    return RegistryCredentials(username, password, source="prompt")


def docker_login(ctx: RunContext, registry: str | None = None) -> RegistryCredentials:
    """Authenticate the docker CLI, passing the password on stdin."""
    creds = resolve_credentials(ctx, registry)
    args = ["login", "--username", creds.username, "--password-stdin"]
    if registry:
        args.append(registry)

    logger.info("Logging in to %s as %s", registry or "Docker Hub", creds.username)
    result = ctx.runner.run("docker", args, input=creds.password + "\n")
    if not result.ok:
        raise ExternalToolError("docker login", result.exit_code, result.stderr)
    return creds
