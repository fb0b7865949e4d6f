"""
Node package link driver — ``yarn link`` between a package and a project.

A link is healthy when ``<project>/node_modules/<package>`` is a symlink
that resolves (through yarn's link registry) to the package directory.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from cubeops.adapters.base import ResourceDriver
from cubeops.core.models.resource import ObservedState, PackageLink, ResourceKind

logger = logging.getLogger(__name__)


class PackageLinkDriver(ResourceDriver):
    """Manage one linked node package."""

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.PACKAGE_LINK

    @property
    def tools(self) -> tuple[str, ...]:
        return ("yarn",)

    def validate(self, resource: PackageLink, ctx) -> tuple[bool, str]:
        if not (ctx.resolve(resource.package_dir) / "package.json").is_file():
            return False, f"No package.json in {resource.package_dir}"
        if not ctx.resolve(resource.project_dir).is_dir():
            return False, f"Project directory not found: {resource.project_dir}"
        return True, ""

    def probe(self, resource: PackageLink, ctx) -> ObservedState:
        link = ctx.resolve(resource.link_path)
        if link.is_symlink():
            target = link.resolve()
            expected = ctx.resolve(resource.package_dir).resolve()
            if not target.exists():
                return ObservedState.degraded(f"dangling link to {target}")
            if target != expected:
                return ObservedState.degraded(f"links to {target}, expected {expected}")
            return ObservedState.present()
        if link.exists():
            return ObservedState.degraded(f"{link} is an installed copy, not a link")
        return ObservedState.absent()

    def create(self, resource: PackageLink, ctx) -> None:
        package_dir = ctx.resolve(resource.package_dir)
        project_dir = ctx.resolve(resource.project_dir)

        logger.info("Registering %s from %s", resource.package_name, package_dir)
        self.require(ctx.runner.run("yarn", ["link"], cwd=package_dir))
        logger.info("Linking %s into %s", resource.package_name, project_dir)
        self.require(ctx.runner.run("yarn", ["link", resource.package_name], cwd=project_dir))

    def teardown(self, resource: PackageLink, ctx) -> None:
        project_dir = ctx.resolve(resource.project_dir)
        result = ctx.runner.run("yarn", ["unlink", resource.package_name], cwd=project_dir)
        if not result.ok:
            logger.debug("yarn unlink %s failed: %s", resource.package_name, result.stderr)

        link = ctx.resolve(resource.link_path)
        if ctx.dry_run or not (link.exists() or link.is_symlink()):
            return
        _remove(link)


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    else:
        shutil.rmtree(path)
    logger.info("Removed %s", path)
