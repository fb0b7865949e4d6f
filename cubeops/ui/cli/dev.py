"""
CLI commands for the local development and debugging workflow.

Thin wrappers over ``cubeops.core.services.devenv`` and
``cubeops.core.services.toolchain``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click


@click.group()
def dev() -> None:
    """Development — toolchain, package links, debugger."""


def _repo_dir(run, value: str | None) -> Path:
    from cubeops.core.services.devenv import default_repo_dir

    return run.resolve(value) if value else default_repo_dir(run)


def _project_dir(run, value: str | None) -> Path:
    from cubeops.core.services.project import DEFAULT_PROJECT_NAME, project_dir

    return project_dir(run, DEFAULT_PROJECT_NAME, value)


_REPO = click.option("--repo-dir", default=None, help="Source checkout (default: the develop worktree).")
_PROJECT = click.option("--project-dir", default=None, help="Test project directory.")


@dev.command("install-deps")
@click.option("--no-rust", is_flag=True, help="Skip the Rust toolchain.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def install_deps(run, no_rust: bool, as_json: bool) -> None:
    """Install system packages, Node.js, yarn, Rust and Docker if missing."""
    from cubeops.core.services.toolchain import ensure_toolchain

    statuses = ensure_toolchain(run, rust=not no_rust)
    if as_json:
        click.echo(json.dumps([s.to_dict() for s in statuses], indent=2))
        return

    click.secho("🧰 Toolchain", fg="cyan", bold=True)
    for s in statuses:
        icon = "📥" if s.action == "installed" else "✅"
        version = f" {s.version}" if s.version else ""
        click.echo(f"   {icon} {s.name}{version} ({s.action})")


@dev.command("setup")
@_REPO
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def setup(run, repo_dir: str | None, as_json: bool) -> None:
    """Prepare the checkout for playground development."""
    from cubeops.core.services.devenv import setup_playground

    repo_path = _repo_dir(run, repo_dir)
    steps = setup_playground(run, repo_path)
    if as_json:
        click.echo(json.dumps([s.to_dict() for s in steps], indent=2))
        return

    click.secho("🛝 Playground", fg="cyan", bold=True)
    for s in steps:
        icon = "🔨" if s.action == "ran" else "✅"
        detail = f" ({s.detail})" if s.detail else ""
        click.echo(f"   {icon} {s.name}{detail}")
    click.echo(f"   Checkout: {repo_path}")


@dev.command("link")
@_REPO
@_PROJECT
@click.option("--unlink", is_flag=True, help="Remove the links instead.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def link(run, repo_dir: str | None, project_dir: str | None, unlink: bool, as_json: bool) -> None:
    """Link the checkout's core packages into the test project."""
    from cubeops.core.services.devenv import link_packages, unlink_packages
    from cubeops.ui.cli.output import print_report

    repo_path, project_path = _repo_dir(run, repo_dir), _project_dir(run, project_dir)
    if unlink:
        report = unlink_packages(run, repo_path, project_path)
    else:
        report = link_packages(run, repo_path, project_path)
    print_report(report, as_json=as_json, title="🔗 Package links")
    if not report.all_ok:
        sys.exit(1)


@dev.command("launch-config")
@_REPO
@_PROJECT
@click.pass_obj
def launch_config(run, repo_dir: str | None, project_dir: str | None) -> None:
    """Write .vscode/launch.json into the checkout."""
    from cubeops.core.services.devenv import write_launch_config

    path = write_launch_config(
        run, _repo_dir(run, repo_dir), test_project_dir=_project_dir(run, project_dir),
    )
    click.secho(f"✅ Launch configuration written to {path}", fg="green")


@dev.command("debug")
@_REPO
@_PROJECT
@click.option("--no-link", is_flag=True, help="Skip package linking.")
@click.option("--no-build", is_flag=True, help="Skip building the SQL API.")
@click.pass_obj
def debug(run, repo_dir: str | None, project_dir: str | None, no_link: bool, no_build: bool) -> None:
    """Run the dev server under the inspector (port 9229)."""
    from cubeops.core.services.devenv import INSPECTOR_PORT, start_debug_session

    click.secho("🐞 Starting debug session", fg="cyan", bold=True)
    click.echo(f"   Attach your debugger to port {INSPECTOR_PORT} once the server waits for it.")
    code = start_debug_session(
        run,
        _repo_dir(run, repo_dir),
        _project_dir(run, project_dir),
        link=not no_link,
        build_sql=not no_build,
    )
    if code != 0:
        click.secho(f"❌ Dev server exited with code {code}", fg="red")
        sys.exit(code)
