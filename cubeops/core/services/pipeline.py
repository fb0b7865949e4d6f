"""
Build and publish pipeline — staged image builds.

    INIT → CHECKOUT → DEPS → BUILD → CONTAINERIZE → TAG → AUTH → PUSH → DONE
                                     (any failure)                    → FAILED

Each stage is a method that returns nothing and raises on failure. The
first failure stops the run; stages that already completed are not
rolled back. The report names the failed stage and why.

Two flows share the stage machinery:

    BaseImagePipeline   release worktree → yarn build → docker build of
                        packages/cubejs-docker with the changed packages
    FinalImagePipeline  Dockerfile on top of the base image that installs
                        the database drivers

``build_only`` stops after TAG. ``push_only`` runs INIT, TAG, AUTH and
PUSH against an image that must already exist locally.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from cubeops.adapters.registry import DriverRegistry
from cubeops.core.context import RunContext
from cubeops.core.engine.provisioner import ResourceProvisioner
from cubeops.core.errors import ConfirmationDeclined, ConflictError, CubeOpsError, UsageError
from cubeops.core.models.resource import DockerTag
from cubeops.core.models.version import VersionTag, next_version
from cubeops.core.services.credentials import RegistryCredentials, docker_login, registry_host

logger = logging.getLogger(__name__)

# Long-running build commands (yarn build, docker build)
_BUILD_TIMEOUT = 4 * 3600.0
_MAX_VERSION_BUMPS = 20


class Stage(StrEnum):
    INIT = "init"
    CHECKOUT = "checkout"
    DEPS = "deps"
    BUILD = "build"
    CONTAINERIZE = "containerize"
    TAG = "tag"
    AUTH = "auth"
    PUSH = "push"
    DONE = "done"
    FAILED = "failed"


# Executable stages, in order
STAGE_ORDER: tuple[Stage, ...] = (
    Stage.INIT, Stage.CHECKOUT, Stage.DEPS, Stage.BUILD,
    Stage.CONTAINERIZE, Stage.TAG, Stage.AUTH, Stage.PUSH,
)
BUILD_STAGES = (Stage.CHECKOUT, Stage.DEPS, Stage.BUILD, Stage.CONTAINERIZE)
PUBLISH_STAGES = (Stage.AUTH, Stage.PUSH)

STAGE_LABELS: dict[Stage, str] = {
    Stage.INIT: "Check options",
    Stage.CHECKOUT: "Prepare release branch",
    Stage.DEPS: "Install toolchain",
    Stage.BUILD: "Build packages",
    Stage.CONTAINERIZE: "Build image",
    Stage.TAG: "Tag image",
    Stage.AUTH: "Registry login",
    Stage.PUSH: "Push image",
}


@dataclass
class StageResult:
    """Result of executing one pipeline stage."""

    name: Stage
    label: str
    status: str = "pending"             # "pending" | "done" | "error" | "skipped"
    duration_ms: int = 0
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": str(self.name),
            "label": self.label,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class PipelineReport:
    """Result of a full pipeline execution."""

    flow: str
    stages: list[StageResult] = field(default_factory=list)
    state: Stage = Stage.INIT
    pushed: list[str] = field(default_factory=list)
    total_duration_ms: int = 0
    exception: CubeOpsError | OSError | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.state is Stage.DONE

    @property
    def failed_stage(self) -> StageResult | None:
        return next((s for s in self.stages if s.status == "error"), None)

    @property
    def exit_code(self) -> int:
        if self.ok:
            return 0
        return getattr(self.exception, "exit_code", 1) or 1

    def stage(self, name: Stage) -> StageResult:
        return next(s for s in self.stages if s.name is name)

    def to_dict(self) -> dict[str, Any]:
        failed = self.failed_stage
        return {
            "flow": self.flow,
            "ok": self.ok,
            "state": str(self.state),
            "failed_stage": str(failed.name) if failed else None,
            "error": failed.error if failed else None,
            "pushed": self.pushed,
            "total_duration_ms": self.total_duration_ms,
            "stages": [s.to_dict() for s in self.stages],
        }


@dataclass
class PublishOptions:
    """Image names and mode flags for one pipeline run.

    Remote name and tag default to the local ones.
    """

    image_name: str
    image_tag: str = "latest"
    remote_image_name: str | None = None
    remote_image_tag: str | None = None
    build_only: bool = False
    push_only: bool = False
    auto_version: bool = False

    @property
    def local_ref(self) -> str:
        return f"{self.image_name}:{self.image_tag}"

    @property
    def remote_name(self) -> str:
        return self.remote_image_name or self.image_name

    @property
    def remote_tag(self) -> str:
        return self.remote_image_tag or self.image_tag

    @property
    def remote_ref(self) -> str:
        return f"{self.remote_name}:{self.remote_tag}"

    def push_refs(self) -> list[str]:
        """References pushed by PUSH: the tag, then the ``latest`` alias."""
        refs = [self.remote_ref]
        if self.remote_tag != "latest":
            refs.append(f"{self.remote_name}:latest")
        return refs


# ── Stage machinery ─────────────────────────────────────────────


class StagedPipeline:
    """Runs the stages of one flow in order. Subclasses implement ``stage_<name>``."""

    flow = "staged"
    # Stages this flow implements; the others are reported as skipped
    implemented: tuple[Stage, ...] = STAGE_ORDER
    labels: dict[Stage, str] = STAGE_LABELS

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.report = PipelineReport(flow=self.flow)

    def selected_stages(self) -> list[Stage]:
        return [s for s in STAGE_ORDER if s in self.implemented]

    def check_options(self) -> None:
        """Reject contradictory options before any stage runs."""

    def run(self) -> PipelineReport:
        """Execute the selected stages in order.

        UsageError and ConfirmationDeclined propagate to the caller after
        being recorded; every other failure ends the run in FAILED.
        """
        self.check_options()

        report = self.report
        selected = self.selected_stages()
        report.stages = [
            StageResult(name=s, label=self.labels[s], status="pending" if s in selected else "skipped")
            for s in STAGE_ORDER
        ]
        start = time.monotonic()

        for result in report.stages:
            if result.status == "skipped":
                continue
            report.state = result.name
            logger.info("[%s] %s", result.name, result.label)
            stage_start = time.monotonic()
            try:
                getattr(self, f"stage_{result.name}")()
            except (CubeOpsError, OSError) as e:
                result.status = "error"
                result.error = str(e)
                result.duration_ms = _elapsed_ms(stage_start)
                report.state = Stage.FAILED
                report.exception = e
                report.total_duration_ms = _elapsed_ms(start)
                logger.error("Stage %s failed: %s", result.name, e)
                if isinstance(e, (UsageError, ConfirmationDeclined)):
                    raise
                return report
            result.status = "done"
            result.duration_ms = _elapsed_ms(stage_start)

        report.state = Stage.DONE
        report.total_duration_ms = _elapsed_ms(start)
        return report


class ImagePipeline(StagedPipeline):
    """Stage machinery plus the image stages shared by both image flows.

    Args:
        ctx: Run context.
        options: Image names and mode flags.
        registry: Driver registry for the TAG stage.
        list_tags: Registry tag lister used by ``auto_version``. Called
            with ``auth=(username, password)`` for private registries
            once the AUTH stage has logged in.
    """

    flow = "image"

    def __init__(
        self,
        ctx: RunContext,
        options: PublishOptions,
        *,
        registry: DriverRegistry | None = None,
        list_tags: Callable[..., list[str]] | None = None,
    ):
        super().__init__(ctx)
        self.options = options
        self.registry = registry
        self._list_tags = list_tags
        self._credentials: RegistryCredentials | None = None

    def selected_stages(self) -> list[Stage]:
        opts = self.options
        stages = super().selected_stages()
        if opts.push_only:
            stages = [s for s in stages if s not in BUILD_STAGES]
        if opts.build_only:
            stages = [s for s in stages if s not in PUBLISH_STAGES]
        return stages

    def check_options(self) -> None:
        if self.options.build_only and self.options.push_only:
            raise UsageError("--build-only and --push-only are mutually exclusive")

    # ── Shared stages ───────────────────────────────────────────

    def stage_init(self) -> None:
        opts = self.options
        logger.info("Local image: %s, remote image: %s", opts.local_ref, opts.remote_ref)
        if opts.push_only and not self._image_exists(opts.local_ref):
            raise UsageError(
                f"Image {opts.local_ref} not found locally. Build it first or check the name and tag."
            )

    def stage_tag(self) -> None:
        """Point every push reference at the freshly built image."""
        opts = self.options
        tags = []
        for ref in opts.push_refs():
            if ref == opts.local_ref:
                continue
            image, _, tag = ref.rpartition(":")
            tags.append(DockerTag(name=ref, image=image, tag=tag, source=opts.local_ref))

        report = ResourceProvisioner(self.ctx, self.registry, force=True).provision_all(tags)
        if not report.all_ok:
            failure = report.first_failure
            raise CubeOpsError(f"Tagging failed: {failure.last_error if failure else 'aborted'}")

    def stage_auth(self) -> None:
        self._credentials = docker_login(self.ctx, registry_host(self.options.remote_name))

    def stage_push(self) -> None:
        for ref in self.options.push_refs():
            self._push(ref)

        if self.options.auto_version:
            version = self.free_version()
            ref = f"{self.options.remote_name}:{version}"
            self.ctx.runner.check("docker", ["tag", self.options.local_ref, ref])
            self._push(ref)

    # ── Helpers ─────────────────────────────────────────────────

    def _image_exists(self, ref: str) -> bool:
        return self.ctx.runner.succeeds("docker", ["image", "inspect", ref])

    def _push(self, ref: str) -> None:
        logger.info("Pushing %s", ref)
        self.ctx.runner.check("docker", ["push", ref], capture=False, timeout=_BUILD_TIMEOUT)
        self.report.pushed.append(ref)

    def _claim_version(self, version: VersionTag) -> str:
        ref = f"{self.options.remote_name}:{version}"
        if self._image_exists(ref):
            raise ConflictError(ref)
        return str(version)

    def free_version(self) -> str:
        """Next semantic version not yet used remotely or locally."""
        if self._list_tags is None:
            from cubeops.core.services.registry_tags import list_tags

            self._list_tags = list_tags
        remote = self.options.remote_name
        creds = self._credentials
        if creds is not None and registry_host(remote) is not None:
            tags = self._list_tags(remote, auth=(creds.username, creds.password))
        else:
            tags = self._list_tags(remote)
        candidate = next_version(tags)

        for _ in range(_MAX_VERSION_BUMPS):
            try:
                return self._claim_version(candidate)
            except ConflictError as e:
                logger.info("%s, trying the next patch version", e)
                candidate = candidate.bump_patch()
        raise CubeOpsError(f"No free version found for {self.options.remote_name} near {candidate}")

    def _build_image(self, context_dir: Path, dockerfile: str) -> None:
        logger.info("Building %s", self.options.local_ref)
        self.ctx.runner.check(
            "docker",
            ["build", "-t", self.options.local_ref, "-f", dockerfile, ".", "--no-cache"],
            cwd=context_dir,
            capture=False,
            timeout=_BUILD_TIMEOUT,
        )


# ── Flows ───────────────────────────────────────────────────────


class BaseImagePipeline(ImagePipeline):
    """Build the server image from the release branch.

    Args:
        dockerfile: Dockerfile copied into packages/cubejs-docker before
            the build (default: the checkout's own ``latest.Dockerfile``).
        show_diff: Include the full diff in the release preview.
        on_preview: Called with the release preview before the merge prompt.
    """

    flow = "base"

    def __init__(
        self,
        ctx: RunContext,
        options: PublishOptions,
        *,
        dockerfile: str | None = None,
        show_diff: bool = False,
        on_preview: Callable | None = None,
        **kwargs: Any,
    ):
        super().__init__(ctx, options, **kwargs)
        self.dockerfile = dockerfile
        self.show_diff = show_diff
        self.on_preview = on_preview
        self.release_dir: Path | None = None
        self.changed_packages: list[str] = []

    def stage_checkout(self) -> None:
        from cubeops.core.services.repository import prepare_release

        preview = prepare_release(
            self.ctx, show_diff=self.show_diff, on_preview=self.on_preview, registry=self.registry,
        )
        self.release_dir = preview.worktree
        self.changed_packages = preview.changed_packages

    def stage_deps(self) -> None:
        from cubeops.core.services.toolchain import ensure_toolchain

        ensure_toolchain(self.ctx)

    def stage_build(self) -> None:
        release = self._release()
        for args in (["install"], ["build"], ["lerna", "run", "build"]):
            logger.info("yarn %s", " ".join(args))
            self.ctx.runner.check("yarn", args, cwd=release, capture=False, timeout=_BUILD_TIMEOUT)

    def stage_containerize(self) -> None:
        from cubeops.core.services.repository import copy_packages

        release = self._release()
        docker_dir = release / "packages" / "cubejs-docker"
        copied = copy_packages(self.ctx, release, self.changed_packages, docker_dir / "packages")
        logger.info("Copied %d changed package(s) into the image context", len(copied))

        self.ctx.runner.check("yarn", ["install"], cwd=docker_dir, capture=False, timeout=_BUILD_TIMEOUT)

        dockerfile = "latest.Dockerfile"
        if not self.ctx.dry_run:
            shutil.copy2(release / "yarn.lock", docker_dir / "yarn.lock")
            if self.dockerfile:
                source = self.ctx.resolve(self.dockerfile)
                dockerfile = source.name
                shutil.copy2(source, docker_dir / dockerfile)
        self._build_image(docker_dir, dockerfile)

    def _release(self) -> Path:
        if self.release_dir is None:
            repo = self.ctx.config.repository
            from cubeops.core.services.repository import RepositoryLayout

            self.release_dir = RepositoryLayout.for_name(self.ctx, repo.name).branch_dir(repo.release_branch)
        return self.release_dir


class FinalImagePipeline(ImagePipeline):
    """Layer the database drivers on top of the base image."""

    flow = "final"
    implemented = (Stage.INIT, Stage.DEPS, Stage.CONTAINERIZE, Stage.TAG, Stage.AUTH, Stage.PUSH)

    def __init__(
        self,
        ctx: RunContext,
        options: PublishOptions,
        *,
        base_image: str,
        packages: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(ctx, options, **kwargs)
        self.base_image = base_image
        self.packages = packages

    def stage_deps(self) -> None:
        from cubeops.core.services.toolchain import ensure_docker

        ensure_docker(self.ctx)

    def stage_containerize(self) -> None:
        from cubeops.core.services.templates import render_dockerfile, write_generated

        logger.info("Base image: %s", self.base_image)
        with tempfile.TemporaryDirectory(prefix="cubeops-build-") as build_dir:
            context_dir = Path(build_dir)
            dockerfile = render_dockerfile(self.base_image, self.packages)
            write_generated(dockerfile, self.ctx, context_dir)
            self._build_image(context_dir, dockerfile.path)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
