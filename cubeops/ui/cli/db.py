"""
CLI commands for the disposable test databases.

Thin wrappers over ``cubeops.core.services.databases``.
"""

from __future__ import annotations

import json
import sys

import click

from cubeops.core.services.databases import DB_TYPES


@click.group()
def db() -> None:
    """Test databases — PostgreSQL, MySQL, Apache Doris."""


_KIND = click.argument("kind", type=click.Choice(DB_TYPES))
_JSON = click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")


@db.command("up")
@_KIND
@click.option("--force", is_flag=True, help="Delete and recreate the database and its data.")
@click.option("--no-seed", is_flag=True, help="Do not load the seed tables.")
@_JSON
@click.pass_obj
def up(run, kind: str, force: bool, no_seed: bool, as_json: bool) -> None:
    """Start a database and load the seed tables."""
    from cubeops.core.services.databases import bring_up, connection_summary, get_profile
    from cubeops.ui.cli.output import print_report

    report = bring_up(run, kind, force=force, seed=not no_seed)
    print_report(report, as_json=as_json, title=f"🗄️  {kind}")
    if not report.all_ok:
        sys.exit(1)

    if not as_json:
        click.echo()
        click.secho("   Connection:", fg="white", bold=True)
        for line in connection_summary(get_profile(kind, run)):
            click.echo(f"     {line}")


@db.command("down")
@_KIND
@click.option("--remove-data", is_flag=True, help="Also delete volumes and data directories.")
@_JSON
@click.pass_obj
def down(run, kind: str, remove_data: bool, as_json: bool) -> None:
    """Stop a database (data is kept unless --remove-data)."""
    from cubeops.core.services.databases import tear_down
    from cubeops.ui.cli.output import print_report

    report = tear_down(run, kind, remove_data=remove_data)
    print_report(report, as_json=as_json, title=f"🗄️  {kind}")
    if not report.all_ok:
        sys.exit(1)


@db.command("seed")
@_KIND
@click.option("--force", is_flag=True, help="Drop and reload the seed tables.")
@_JSON
@click.pass_obj
def seed(run, kind: str, force: bool, as_json: bool) -> None:
    """(Re)load the seed tables into a running database."""
    from cubeops.core.services.databases import seed_database
    from cubeops.ui.cli.output import print_report

    if force:
        run.confirm(f"Drop and reload the seed tables in {kind}?")
    report = seed_database(run, kind, force=force)
    print_report(report, as_json=as_json, title=f"🌱 {kind}")
    if not report.all_ok:
        sys.exit(1)


@db.command("info")
@_KIND
@_JSON
@click.pass_obj
def info(run, kind: str, as_json: bool) -> None:
    """Show connection details for a database."""
    from cubeops.core.services.databases import connection_summary, get_profile

    profile = get_profile(kind, run)
    if as_json:
        conn = profile.connection()
        click.echo(json.dumps({
            "kind": kind,
            "version": profile.version,
            "containers": list(profile.containers),
            "data_root": str(profile.root),
            **conn.cube_env(),
        }, indent=2))
        return

    click.secho(f"🗄️  {kind} {profile.version}", fg="cyan", bold=True)
    for line in connection_summary(profile):
        click.echo(f"   {line}")
