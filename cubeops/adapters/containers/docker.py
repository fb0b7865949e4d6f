"""
Docker drivers — compose services and image tags.

Uses the docker CLI (``docker compose`` v2 syntax), never the Docker API.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable

from cubeops.adapters.base import ResourceDriver
from cubeops.adapters.shell.network import port_open
from cubeops.core.errors import UsageError
from cubeops.core.models.resource import ComposeService, DockerTag, ObservedState, ResourceKind

logger = logging.getLogger(__name__)

COMPOSE_FILE = "docker-compose.yml"


def container_names(ctx, *, include_stopped: bool = False) -> set[str]:
    """Names from ``docker ps`` (``-a`` when include_stopped)."""
    args = ["ps", "--format", "{{.Names}}"]
    if include_stopped:
        args.insert(1, "-a")
    result = ctx.runner.run("docker", args, mutating=False)
    if not result.ok:
        return set()
    return {line.strip() for line in result.stdout.splitlines() if line.strip()}


class ComposeServiceDriver(ResourceDriver):
    """A docker compose project whose containers must be up and healthy.

    Probe:
        no container known to docker              → Absent
        some stopped, or some missing             → Degraded
        all running, compose file on disk differs → Degraded
        all running, health check failing         → Degraded
        all running, health check passing         → Healthy

    A missing compose file does not count as drift.
    """

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.COMPOSE_SERVICE

    @property
    def tools(self) -> tuple[str, ...]:
        return ("docker",)

    def probe(self, resource: ComposeService, ctx) -> ObservedState:
        running = container_names(ctx)
        up = [c for c in resource.containers if c in running]
        if len(up) == len(resource.containers):
            if self._compose_drifted(resource, ctx):
                return ObservedState.degraded("compose file out of date")
            return self._check_health(resource, ctx)

        present = container_names(ctx, include_stopped=True)
        known = [c for c in resource.containers if c in present or c in running]
        if not known:
            return ObservedState.absent()
        down = [c for c in resource.containers if c not in running]
        return ObservedState.degraded(f"not running: {', '.join(down)}")

    def _compose_drifted(self, resource: ComposeService, ctx) -> bool:
        compose_file = ctx.resolve(resource.compose_dir) / COMPOSE_FILE
        if not compose_file.is_file():
            return False
        return compose_file.read_text(encoding="utf-8") != resource.compose_content

    def _check_health(self, resource: ComposeService, ctx) -> ObservedState:
        health = resource.health
        if health.port is not None:
            if not port_open(health.host, health.port):
                return ObservedState.degraded(f"port {health.port} not accepting connections")
        if health.command:
            result = ctx.runner.run(
                "docker", ["exec", resource.containers[0], *health.command], mutating=False,
            )
            if not result.ok:
                return ObservedState.degraded(
                    f"health check `{' '.join(health.command)}` exited {result.exit_code}"
                )
        return ObservedState.present()

    def create(self, resource: ComposeService, ctx) -> None:
        compose_dir = ctx.resolve(resource.compose_dir)
        compose_file = compose_dir / COMPOSE_FILE

        if ctx.dry_run:
            logger.info("[dry-run] would write %s", compose_file)
        else:
            compose_dir.mkdir(parents=True, exist_ok=True)
            for data_dir in resource.data_dirs:
                ctx.resolve(data_dir).mkdir(parents=True, exist_ok=True)
            compose_file.write_text(resource.compose_content, encoding="utf-8")
            logger.info("Wrote %s", compose_file)

        # Containers with the same names left over from another project
        stale = [c for c in resource.containers if c in container_names(ctx, include_stopped=True)]
        if stale:
            logger.info("Removing stale containers: %s", ", ".join(stale))
            ctx.runner.run("docker", ["rm", "-f", *stale])

        logger.info("Starting %s", resource.name)
        self.require(ctx.runner.run(
            "docker",
            ["compose", "-f", str(compose_file), "up", "-d"],
            cwd=compose_dir,
            env=resource.env or None,
        ))

    def teardown(self, resource: ComposeService, ctx) -> None:
        compose_dir = ctx.resolve(resource.compose_dir)
        compose_file = compose_dir / COMPOSE_FILE

        if compose_file.is_file():
            args = ["compose", "-f", str(compose_file), "down"]
            if resource.remove_volumes:
                args.append("-v")
            result = ctx.runner.run("docker", args, cwd=compose_dir)
            if not result.ok:
                logger.warning("compose down failed for %s: %s", resource.name, result.stderr)

        leftovers = [c for c in resource.containers if c in container_names(ctx, include_stopped=True)]
        if leftovers:
            ctx.runner.run("docker", ["rm", "-f", *leftovers])

        if resource.remove_volumes:
            for data_dir in resource.data_dirs:
                path = ctx.resolve(data_dir)
                if not path.exists():
                    continue
                if ctx.dry_run:
                    logger.info("[dry-run] would remove %s", path)
                else:
                    logger.info("Removing data directory %s", path)
                    shutil.rmtree(path)


class DockerTagDriver(ResourceDriver):
    """An image reference that must exist locally (or remotely).

    Args:
        list_tags: Tag lister for remote lookups (defaults to the
            registry client).
    """

    def __init__(self, list_tags: Callable[[str], list[str]] | None = None):
        self._list_tags = list_tags

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.DOCKER_TAG

    @property
    def tools(self) -> tuple[str, ...]:
        return ("docker",)

    def probe(self, resource: DockerTag, ctx) -> ObservedState:
        if ctx.runner.succeeds("docker", ["image", "inspect", resource.reference]):
            return ObservedState.present()
        if resource.remote:
            if resource.tag in self._tags(resource.image):
                return ObservedState.present()
        return ObservedState.absent()

    def create(self, resource: DockerTag, ctx) -> None:
        if not resource.source:
            raise UsageError(f"No source image to tag {resource.reference} from")
        logger.info("Tagging %s as %s", resource.source, resource.reference)
        self.require(ctx.runner.run("docker", ["tag", resource.source, resource.reference]))

    def teardown(self, resource: DockerTag, ctx) -> None:
        result = ctx.runner.run("docker", ["rmi", resource.reference])
        if not result.ok:
            logger.debug("rmi %s failed: %s", resource.reference, result.stderr)

    def _tags(self, image: str) -> list[str]:
        if self._list_tags is None:
            from cubeops.core.services.registry_tags import list_tags

            self._list_tags = list_tags
        return self._list_tags(image)
