"""
Repository service — source checkouts laid out as worktrees.

Layout under ``<projects_dir>/<name>/``::

    git/                 the repository's git directory (--separate-git-dir)
    branches/<base>/     main checkout of the base branch
    branches/<dir>/      one worktree per additional branch

Branch names containing ``/`` map to directory names with ``--``
(``feature/x`` → ``feature--x``).

Releases are cut in a dedicated ``release`` worktree: recreated from the
base branch, the source branch's changes are shown and, after
confirmation, merged in.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from cubeops.adapters.registry import DriverRegistry
from cubeops.core.context import RunContext
from cubeops.core.engine.provisioner import ResourceProvisioner
from cubeops.core.errors import CubeOpsError, ExternalToolError, UsageError
from cubeops.core.models.plan import RunReport
from cubeops.core.models.resource import GitWorktree

logger = logging.getLogger(__name__)


def branch_dirname(branch: str) -> str:
    return branch.replace("/", "--")


@dataclass(frozen=True)
class RepositoryLayout:
    """Paths of one repository checkout."""

    name: str
    root: Path

    @classmethod
    def for_name(cls, ctx: RunContext, name: str) -> RepositoryLayout:
        return cls(name=name, root=ctx.config.projects_path / name)

    @property
    def git_dir(self) -> Path:
        return self.root / "git"

    @property
    def branches_dir(self) -> Path:
        return self.root / "branches"

    def branch_dir(self, branch: str) -> Path:
        return self.branches_dir / branch_dirname(branch)


# ── Setup ───────────────────────────────────────────────────────


def _git(ctx: RunContext, args: list[str], cwd: Path) -> None:
    ctx.runner.check("git", args, cwd=cwd)


def _backup(path: Path, ctx: RunContext) -> None:
    """Move an unusable git directory out of the way."""
    target = path.with_name(f"{path.name}_backup_{datetime.now():%Y%m%d_%H%M%S}")
    logger.warning("Moving incomplete git directory %s to %s", path, target)
    if not ctx.dry_run:
        path.rename(target)


def _clone_base(ctx: RunContext, layout: RepositoryLayout, url: str, base: str) -> None:
    base_dir = layout.branch_dir(base)
    if base_dir.is_dir():
        logger.info("%s already cloned at %s", layout.name, base_dir)
        return

    if layout.git_dir.exists() and not (layout.git_dir / "refs").is_dir():
        _backup(layout.git_dir, ctx)

    if not ctx.dry_run:
        layout.branches_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Cloning %s into %s", url, base_dir)
    _git(ctx, [
        "clone", f"--separate-git-dir={layout.git_dir}", "--branch", base, url, str(base_dir),
    ], cwd=layout.root if layout.root.is_dir() else Path.cwd())


def _sync_remote(ctx: RunContext, base_dir: Path, url: str, remote: str) -> None:
    if not ctx.runner.run("git", ["remote", "set-url", remote, url], cwd=base_dir).ok:
        _git(ctx, ["remote", "add", remote, url], base_dir)
    _git(ctx, ["fetch", remote], base_dir)


def setup_repository(
    ctx: RunContext,
    url: str,
    name: str,
    branches: list[str],
    *,
    update: bool = False,
    registry: DriverRegistry | None = None,
) -> tuple[RepositoryLayout, RunReport]:
    """Clone ``url`` and check out every branch in its own directory.

    The first branch is the base checkout; the others become worktrees
    of it. Branches that already have a directory are left alone, so
    re-running only adds what is missing.

    Args:
        url: Clone URL.
        name: Directory name under the projects dir.
        branches: Base branch first, then additional branches.
        update: ``git pull`` every branch afterwards.
    """
    if not branches:
        raise UsageError(f"At least one branch must be given for {name}")

    layout = RepositoryLayout.for_name(ctx, name)
    base, *others = branches
    base_dir = layout.branch_dir(base)

    _clone_base(ctx, layout, url, base)
    _sync_remote(ctx, base_dir, url, ctx.config.repository.remote)

    worktrees = [
        GitWorktree(
            name=f"{name}/{branch}",
            path=str(layout.branch_dir(branch)),
            branch=branch,
            repo_dir=str(base_dir),
        )
        for branch in others
    ]
    report = ResourceProvisioner(ctx, registry).provision_all(worktrees)

    if update and report.all_ok:
        for branch in branches:
            logger.info("Updating %s", branch)
            _git(ctx, ["pull", ctx.config.repository.remote, branch], layout.branch_dir(branch))

    return layout, report


# ── Release ─────────────────────────────────────────────────────


@dataclass
class ReleasePreview:
    """What a release merge would bring in."""

    worktree: Path
    base_ref: str
    source_ref: str
    changed_packages: list[str] = field(default_factory=list)
    changed_files: list[str] = field(default_factory=list)   # "M\tpath" lines
    diff: str = ""


def parse_changed_packages(names: str) -> list[str]:
    """Top-level package directories from ``git diff --name-only`` output."""
    packages = set()
    for line in names.splitlines():
        parts = line.strip().split("/")
        if len(parts) > 2 and parts[0] == "packages":
            packages.add(parts[1])
    return sorted(packages)


def release_changes(
    ctx: RunContext,
    worktree: Path,
    base_ref: str,
    source_ref: str,
    *,
    with_diff: bool = False,
) -> ReleasePreview:
    """Files and packages that differ between two refs."""
    names = ctx.runner.run(
        "git", ["diff", "--name-only", base_ref, source_ref], cwd=worktree, mutating=False,
    )
    if not names.ok:
        raise ExternalToolError(names.command, names.exit_code, names.stderr)
    status = ctx.runner.run(
        "git", ["diff", "--name-status", base_ref, source_ref], cwd=worktree, mutating=False,
    )
    preview = ReleasePreview(
        worktree=worktree,
        base_ref=base_ref,
        source_ref=source_ref,
        changed_packages=parse_changed_packages(names.stdout),
        changed_files=status.stdout.splitlines() if status.ok else [],
    )
    if with_diff:
        preview.diff = ctx.runner.run(
            "git", ["diff", "--color=always", base_ref, source_ref], cwd=worktree, mutating=False,
        ).stdout
    return preview


def prepare_release(
    ctx: RunContext,
    *,
    show_diff: bool = False,
    on_preview: Callable[[ReleasePreview], None] | None = None,
    registry: DriverRegistry | None = None,
) -> ReleasePreview:
    """Recreate the release worktree and merge the source branch into it.

    Removing an existing release worktree and merging both need
    confirmation. ``on_preview`` is called with the changes before the
    merge prompt so the caller can show them.

    Returns:
        The preview of what was merged.
    """
    repo = ctx.config.repository
    layout = RepositoryLayout.for_name(ctx, repo.name)
    base_dir = layout.branch_dir(repo.base_branch)
    release_dir = layout.branch_dir(repo.release_branch)

    if not base_dir.is_dir():
        raise UsageError(
            f"{repo.base_branch} checkout not found at {base_dir}. Run `cubeops repo setup` first."
        )

    branch_exists = ctx.runner.succeeds(
        "git", ["show-ref", "--verify", "--quiet", f"refs/heads/{repo.release_branch}"], cwd=base_dir,
    )
    if release_dir.exists() or branch_exists:
        ctx.confirm(f"Remove the existing {repo.release_branch} worktree and branch?")
    if branch_exists and not release_dir.exists():
        # Branch without a worktree: the create below would refuse to reuse it
        ctx.runner.run("git", ["worktree", "prune"], cwd=base_dir)
        _git(ctx, ["branch", "-D", repo.release_branch], base_dir)

    worktree = GitWorktree(
        name=repo.release_branch,
        path=str(release_dir),
        branch=repo.release_branch,
        repo_dir=str(base_dir),
        start_point=repo.base_branch,
        delete_branch_on_teardown=True,
    )
    provisioner = ResourceProvisioner(ctx, registry, force=True)
    report = provisioner.provision_all([worktree])
    if not report.all_ok:
        failure = report.first_failure
        raise CubeOpsError(f"Could not create the release worktree: {failure.last_error if failure else ''}")

    # Dry-run never created the worktree; diff from the base checkout instead
    workdir = release_dir if release_dir.is_dir() else base_dir
    _git(ctx, ["fetch", repo.remote, repo.source_branch], workdir)

    preview = release_changes(
        ctx,
        workdir,
        f"{repo.remote}/{repo.base_branch}",
        f"{repo.remote}/{repo.source_branch}",
        with_diff=show_diff,
    )
    preview.worktree = release_dir
    logger.info("Changed packages: %s", ", ".join(preview.changed_packages) or "none")
    if on_preview is not None:
        on_preview(preview)

    ctx.confirm(f"Merge {preview.source_ref} into {repo.release_branch}?")
    _git(ctx, ["merge", preview.source_ref], workdir)
    logger.info("Release branch ready at %s", release_dir)
    return preview


def copy_packages(ctx: RunContext, worktree: Path, packages: list[str], target: Path) -> list[str]:
    """Copy changed package directories into ``target``. Returns the copied names."""
    copied = []
    for package in packages:
        source = worktree / "packages" / package
        if not source.is_dir():
            logger.debug("Skipping %s (no directory)", package)
            continue
        if ctx.dry_run:
            logger.info("[dry-run] would copy %s to %s", source, target)
        else:
            target.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, target / package, dirs_exist_ok=True)
        copied.append(package)
    return copied
