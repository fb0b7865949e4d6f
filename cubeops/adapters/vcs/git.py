"""
Git worktree driver — one branch checked out in one directory.

Uses the git CLI through the run context's runner. The repository
itself (``repo_dir``) must already exist; this driver only manages the
worktree registered inside it.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from cubeops.adapters.base import ResourceDriver
from cubeops.core.models.resource import GitWorktree, ObservedState, ResourceKind

logger = logging.getLogger(__name__)


def parse_worktree_list(porcelain: str) -> dict[str, str | None]:
    """Parse ``git worktree list --porcelain`` into {path: branch}.

    Detached worktrees map to None. Branch names are short
    (``refs/heads/`` stripped).
    """
    worktrees: dict[str, str | None] = {}
    current: str | None = None
    for line in porcelain.splitlines():
        if line.startswith("worktree "):
            current = line[len("worktree "):].strip()
            worktrees[current] = None
        elif line.startswith("branch ") and current is not None:
            ref = line[len("branch "):].strip()
            worktrees[current] = ref.removeprefix("refs/heads/")
    return worktrees


class GitWorktreeDriver(ResourceDriver):
    """Manage a git worktree.

    Probe:
        missing directory                          → Absent
        directory not registered as a worktree     → Degraded
        registered but on another branch           → Degraded
        registered on the expected branch          → Healthy
    """

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.GIT_WORKTREE

    @property
    def tools(self) -> tuple[str, ...]:
        return ("git",)

    def validate(self, resource: GitWorktree, ctx) -> tuple[bool, str]:
        if not ctx.resolve(resource.repo_dir).is_dir():
            return False, f"Repository directory not found: {resource.repo_dir}"
        return True, ""

    def probe(self, resource: GitWorktree, ctx) -> ObservedState:
        path = ctx.resolve(resource.path)
        if not path.exists():
            return ObservedState.absent()

        result = ctx.runner.run(
            "git",
            ["worktree", "list", "--porcelain"],
            cwd=ctx.resolve(resource.repo_dir),
            mutating=False,
        )
        if not result.ok:
            return ObservedState.degraded(f"git worktree list failed: {result.stderr}")

        worktrees = {
            str(Path(p).resolve()): branch
            for p, branch in parse_worktree_list(result.stdout).items()
        }
        key = str(path.resolve())
        if key not in worktrees:
            return ObservedState.degraded(f"{path} exists but is not a registered worktree")
        if worktrees[key] != resource.branch:
            return ObservedState.degraded(
                f"{path} is on {worktrees[key] or 'a detached HEAD'}, expected {resource.branch}"
            )
        return ObservedState.present()

    def create(self, resource: GitWorktree, ctx) -> None:
        repo = ctx.resolve(resource.repo_dir)
        path = ctx.resolve(resource.path)
        path.parent.mkdir(parents=True, exist_ok=True)

        if resource.start_point:
            logger.info("Creating worktree %s on new branch %s from %s",
                        path, resource.branch, resource.start_point)
            self.require(ctx.runner.run(
                "git",
                ["worktree", "add", str(path), "-b", resource.branch, resource.start_point],
                cwd=repo,
            ))
            return

        self._ensure_branch(resource.branch, repo, ctx)
        logger.info("Creating worktree %s for branch %s", path, resource.branch)
        self.require(ctx.runner.run(
            "git", ["worktree", "add", str(path), resource.branch], cwd=repo,
        ))

    def teardown(self, resource: GitWorktree, ctx) -> None:
        repo = ctx.resolve(resource.repo_dir)
        path = ctx.resolve(resource.path)

        result = ctx.runner.run("git", ["worktree", "remove", "-f", str(path)], cwd=repo)
        if not result.ok:
            logger.debug("worktree remove failed: %s", result.stderr)
        ctx.runner.run("git", ["worktree", "prune"], cwd=repo)

        # Leftover directory that git does not know about
        if path.exists() and not ctx.dry_run:
            logger.info("Removing leftover directory %s", path)
            shutil.rmtree(path)

        if resource.delete_branch_on_teardown:
            result = ctx.runner.run("git", ["branch", "-D", resource.branch], cwd=repo)
            if not result.ok:
                logger.debug("branch -D %s failed: %s", resource.branch, result.stderr)

    def _ensure_branch(self, branch: str, repo: Path, ctx) -> None:
        """Make sure a local branch exists: fetch it, or create it from HEAD."""
        if ctx.runner.succeeds(
            "git", ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo,
        ):
            return
        fetched = ctx.runner.run("git", ["fetch", "origin", f"{branch}:{branch}"], cwd=repo)
        if fetched.ok:
            return
        logger.warning("Branch %s not found on origin, creating it locally", branch)
        self.require(ctx.runner.run("git", ["branch", branch], cwd=repo))
