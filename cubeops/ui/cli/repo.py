"""
CLI commands for source checkouts and release branches.

Thin wrappers over ``cubeops.core.services.repository``.
"""

from __future__ import annotations

import json
import sys

import click


@click.group()
def repo() -> None:
    """Repository — worktree checkouts and release branches."""


@repo.command("setup")
@click.option("--url", default=None, help="Clone URL (default: from cubeops.yml).")
@click.option("--name", default=None, help="Directory name under the projects dir.")
@click.option("--branch", "branches", multiple=True,
              help="Branch to check out (repeatable; the first is the base).")
@click.option("--develop-branch", default=None, help="Development branch (default: develop).")
@click.option("--update", is_flag=True, help="git pull every branch afterwards.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def setup(
    run,
    url: str | None,
    name: str | None,
    branches: tuple[str, ...],
    develop_branch: str | None,
    update: bool,
    as_json: bool,
) -> None:
    """Clone the repository and create one worktree per branch."""
    from cubeops.core.services.repository import setup_repository
    from cubeops.ui.cli.output import print_report

    defaults = run.config.repository
    if not branches:
        branches = (
            defaults.base_branch,
            defaults.source_branch,
            develop_branch or defaults.develop_branch,
        )

    layout, report = setup_repository(
        run, url or defaults.url, name or defaults.name, list(branches), update=update,
    )
    print_report(report, as_json=as_json, title=f"🌿 {layout.name}")
    if not report.all_ok:
        sys.exit(1)

    if not as_json:
        click.echo()
        for branch in branches:
            click.echo(f"   {branch:<20} {layout.branch_dir(branch)}")


@repo.command("release")
@click.option("--show-diff", is_flag=True, help="Page through the full diff before merging.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def release(run, show_diff: bool, as_json: bool) -> None:
    """Recreate the release branch and merge the source branch into it."""
    from cubeops.core.services.repository import prepare_release

    def show(preview) -> None:
        if as_json:
            return
        click.secho(f"📦 Changes {preview.base_ref}..{preview.source_ref}", fg="cyan", bold=True)
        click.echo(f"   Packages: {', '.join(preview.changed_packages) or 'none'}")
        for line in preview.changed_files:
            click.echo(f"   {line}")
        if preview.diff:
            click.echo_via_pager(preview.diff)

    preview = prepare_release(run, show_diff=show_diff, on_preview=show)

    if as_json:
        click.echo(json.dumps({
            "worktree": str(preview.worktree),
            "merged": preview.source_ref,
            "changed_packages": preview.changed_packages,
        }, indent=2))
        return
    click.secho(f"✅ Release branch ready at {preview.worktree}", fg="green")
