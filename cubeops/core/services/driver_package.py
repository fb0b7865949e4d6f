"""
Driver package publish — build, test and publish the database driver to npm.

Runs on the same stage machinery as the image flows:

    INIT   package.json read (name, version)
    DEPS   system packages, Node.js, yarn
    BUILD  yarn install → yarn build → yarn test (only when the package has tests)
    TAG    npm view name@version; taken → next free patch written to package.json
    PUSH   yarn publish --new-version <version> --access <access>

package.json is put back exactly as it was read when the run ends,
whether it succeeded, failed or was interrupted.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from cubeops.core.context import RunContext
from cubeops.core.errors import CubeOpsError, UsageError
from cubeops.core.models.version import VersionTag
from cubeops.core.services.pipeline import STAGE_LABELS, PipelineReport, Stage, StagedPipeline

logger = logging.getLogger(__name__)

# Long-running yarn commands (install, build, test, publish)
_BUILD_TIMEOUT = 4 * 3600.0
_MAX_VERSION_BUMPS = 20

MANIFEST = "package.json"

# ``npm init`` writes this test script; it means "no tests"
NPM_DEFAULT_TEST = 'echo "Error: no test specified" && exit 1'

SYSTEM_PACKAGES = ["curl", "git", "build-essential", "python3"]


def default_package_dir(ctx: RunContext) -> Path:
    """Checkout of the driver's publish branch."""
    from cubeops.core.services.repository import RepositoryLayout

    settings = ctx.config.driver_package
    return RepositoryLayout.for_name(ctx, settings.name).branch_dir(settings.branch)


def read_manifest(package_dir: Path) -> dict:
    path = package_dir / MANIFEST
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise UsageError(f"{MANIFEST} not found in {package_dir}") from e
    except json.JSONDecodeError as e:
        raise CubeOpsError(f"Invalid {path}: {e}") from e
    if not isinstance(data, dict) or not data.get("name") or not data.get("version"):
        raise CubeOpsError(f"{path} must have a name and a version")
    return data


def write_manifest_version(package_dir: Path, version: str) -> None:
    """Set ``version`` in package.json (two-space indent, trailing newline)."""
    data = read_manifest(package_dir)
    data["version"] = version
    text = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    (package_dir / MANIFEST).write_text(text, encoding="utf-8")


def has_tests(package_dir: Path, manifest: dict) -> bool:
    """A real test script, or a test/ or tests/ directory."""
    script = (manifest.get("scripts") or {}).get("test") or ""
    if script and script != NPM_DEFAULT_TEST:
        return True
    return (package_dir / "test").is_dir() or (package_dir / "tests").is_dir()


def version_published(ctx: RunContext, name: str, version: str) -> bool:
    """True if ``name@version`` is already on the npm registry."""
    result = ctx.runner.run("npm", ["view", f"{name}@{version}", "version"], mutating=False)
    return result.ok and bool(result.stdout.strip())


class DriverPackagePipeline(StagedPipeline):
    """Build and publish one npm package from its checkout.

    Args:
        ctx: Run context.
        package_dir: Package checkout (must contain package.json).
        access: ``yarn publish --access`` value.
        build_only: Stop before publishing.
        bump: Version position to bump when the version is taken.
    """

    flow = "driver"
    implemented = (Stage.INIT, Stage.DEPS, Stage.BUILD, Stage.TAG, Stage.PUSH)
    labels = {
        **STAGE_LABELS,
        Stage.INIT: "Read package.json",
        Stage.BUILD: "Build and test package",
        Stage.TAG: "Choose version",
        Stage.PUSH: "Publish package",
    }

    def __init__(
        self,
        ctx: RunContext,
        package_dir: Path,
        *,
        access: str = "public",
        build_only: bool = False,
        bump: str = "patch",
    ):
        super().__init__(ctx)
        self.package_dir = package_dir
        self.access = access
        self.build_only = build_only
        self.bump = bump
        self.name = ""
        self.version = ""
        self._original_manifest: str | None = None

    def selected_stages(self) -> list[Stage]:
        stages = super().selected_stages()
        if self.build_only:
            stages = [s for s in stages if s is not Stage.PUSH]
        return stages

    def run(self) -> PipelineReport:
        try:
            return super().run()
        finally:
            self.restore_manifest()

    # ── Stages ──────────────────────────────────────────────────

    def stage_init(self) -> None:
        if not self.package_dir.is_dir():
            raise UsageError(
                f"Package directory not found at {self.package_dir}. "
                "Clone it first: cubeops repo setup --url <driver repo> --name <dir>"
            )
        manifest = read_manifest(self.package_dir)
        self._original_manifest = (self.package_dir / MANIFEST).read_text(encoding="utf-8")
        self.name, self.version = manifest["name"], manifest["version"]
        logger.info("Package %s, current version %s", self.name, self.version)

    def stage_deps(self) -> None:
        from cubeops.core.services.toolchain import ensure_node, ensure_system_packages, ensure_yarn

        ensure_system_packages(self.ctx, SYSTEM_PACKAGES)
        ensure_node(self.ctx, self.ctx.config.node_version)
        ensure_yarn(self.ctx)

    def stage_build(self) -> None:
        for args in (["install"], ["build"]):
            logger.info("yarn %s", " ".join(args))
            self._yarn(args)

        if has_tests(self.package_dir, read_manifest(self.package_dir)):
            logger.info("Running tests")
            self._yarn(["test", "--passWithNoTests"])
        else:
            logger.info("No tests found, skipping the test step")

    def stage_tag(self) -> None:
        self.version = self.free_version()

    def stage_push(self) -> None:
        logger.info("Publishing %s@%s", self.name, self.version)
        self._yarn(["publish", "--new-version", self.version, "--access", self.access])
        self.report.pushed.append(f"{self.name}@{self.version}")

    # ── Helpers ─────────────────────────────────────────────────

    def free_version(self) -> str:
        """The manifest version, or the first bump of it not yet on npm.

        A bumped version is written to package.json so ``yarn publish``
        sees it.
        """
        if not version_published(self.ctx, self.name, self.version):
            return self.version

        current = VersionTag.parse(self.version)
        if current is None:
            raise CubeOpsError(
                f"{self.name}@{self.version} is already published and the version is not major.minor.patch"
            )
        candidate = current.bump(position=self.bump)
        for _ in range(_MAX_VERSION_BUMPS):
            if not version_published(self.ctx, self.name, str(candidate)):
                break
            candidate = candidate.bump(position="patch")
        else:
            raise CubeOpsError(f"No free version found for {self.name} near {candidate}")

        logger.info("%s@%s is already published, using %s", self.name, self.version, candidate)
        if self.ctx.dry_run:
            logger.info("[dry-run] would set version %s in %s", candidate, MANIFEST)
        else:
            write_manifest_version(self.package_dir, str(candidate))
        return str(candidate)

    def restore_manifest(self) -> bool:
        """Put package.json back as it was read. Returns True if it changed."""
        if self._original_manifest is None:
            return False
        path = self.package_dir / MANIFEST
        if path.is_file() and path.read_text(encoding="utf-8") == self._original_manifest:
            return False
        path.write_text(self._original_manifest, encoding="utf-8")
        logger.info("Restored %s", path)
        return True

    def _yarn(self, args: list[str]) -> None:
        self.ctx.runner.check("yarn", args, cwd=self.package_dir, capture=False, timeout=_BUILD_TIMEOUT)
