"""
CLI commands for the test project.

Thin wrappers over ``cubeops.core.services.project``.
"""

from __future__ import annotations

import sys

import click

from cubeops.core.services.databases import DB_TYPES
from cubeops.core.services.project import DEFAULT_IMAGE, DEFAULT_PROJECT_NAME


@click.group()
def project() -> None:
    """Test project — a Cube server wired to a seeded database."""


@project.command("launch")
@click.option("--name", "project_name", default=DEFAULT_PROJECT_NAME, show_default=True, help="Project name.")
@click.option("--db-type", type=click.Choice(DB_TYPES), default="postgres", show_default=True)
@click.option("--image", default=DEFAULT_IMAGE, show_default=True, help="Cube server image.")
@click.option("--dir", "directory", default=None, help="Project directory (default: <projects_dir>/<name>).")
@click.option("--rest-port", type=int, default=None, help="REST API port (default: first free from 4000).")
@click.option("--sql-port", type=int, default=None, help="SQL API port (default: first free from 15432).")
@click.option("--force-reinstall-db", is_flag=True, help="Delete and recreate the database first.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def launch(
    run,
    project_name: str,
    db_type: str,
    image: str,
    directory: str | None,
    rest_port: int | None,
    sql_port: int | None,
    force_reinstall_db: bool,
    as_json: bool,
) -> None:
    """Start the database and a Cube server for it."""
    from cubeops.core.services.project import choose_ports, launch_project, project_dir
    from cubeops.ui.cli.output import print_report

    root = project_dir(run, project_name, directory)
    rest_port, sql_port = choose_ports(root, rest_port, sql_port)
    report = launch_project(
        run,
        project_name,
        db_type,
        image,
        directory=directory,
        rest_port=rest_port,
        sql_port=sql_port,
        force_reinstall_db=force_reinstall_db,
    )
    print_report(report, as_json=as_json, title=f"🧊 {project_name}")
    if not report.all_ok:
        sys.exit(1)

    if not as_json:
        click.echo()
        click.echo(f"   Playground: http://localhost:{rest_port}")
        click.echo(f"   SQL API:    psql -h localhost -p {sql_port} -U cubesql")
        click.echo(f"   Directory:  {root}")
        click.echo(f"   Sample:     cd {root} && node sample_query.js")


@project.command("cleanup")
@click.option("--name", "project_name", default=DEFAULT_PROJECT_NAME, show_default=True, help="Project name.")
@click.option("--dir", "directory", default=None, help="Project directory.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def cleanup(run, project_name: str, directory: str | None, as_json: bool) -> None:
    """Stop the project's server and delete its directory."""
    from cubeops.core.services.project import cleanup_project
    from cubeops.ui.cli.output import print_report

    report = cleanup_project(run, project_name, directory=directory)
    print_report(report, as_json=as_json, title=f"🧹 {project_name}")
