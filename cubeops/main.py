"""
cubeops — CLI entrypoint.

Usage:
    cubeops --help
    cubeops db up postgres
    cubeops image build-base --build-only
    cubeops project launch --db-type mysql

Exit codes are decided here and nowhere else:

    0   success, or the operator declined a confirmation
    1   usage error, bad flags, generic failure
    N   an external tool's own exit code, when a tool failed
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from cubeops import __version__
from cubeops.core.errors import ConfirmationDeclined, CubeOpsError, ExternalToolError
from cubeops.core.observability.logging_config import configure_from_flags


class CubeOpsGroup(click.Group):
    """Root group: maps errors to exit codes in one place."""

    def main(self, args=None, prog_name=None, complete_var=None, standalone_mode=True, **extra):
        try:
            rv = super().main(args, prog_name, complete_var, standalone_mode=False, **extra)
        except click.ClickException as e:
            e.show()
            code = 1
        except click.Abort:
            click.echo("Aborted!", err=True)
            code = 1
        except ConfirmationDeclined as e:
            click.secho(f"⏹️  {e}. Nothing was changed.", fg="yellow", err=True)
            code = e.exit_code
        except ExternalToolError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            code = e.exit_code
        except CubeOpsError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            code = e.exit_code
        else:
            code = rv if isinstance(rv, int) else 0

        if not standalone_mode:
            return code
        sys.exit(code)


@click.group(cls=CubeOpsGroup)
@click.version_option(version=__version__, prog_name="cubeops")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to cubeops.yml (default: auto-detect).",
)
@click.option("--dry-run", is_flag=True, help="Print mutating commands instead of running them.")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Answer yes to every confirmation.")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    dry_run: bool,
    assume_yes: bool,
) -> None:
    """cubeops — build, test and publish Cube server images."""
    configure_from_flags(debug=debug, verbose=verbose, quiet=quiet)

    from cubeops.core.config.loader import load_config
    from cubeops.core.context import RunContext
    from cubeops.core.engine.runner import CommandRunner

    config = load_config(Path(config_path) if config_path else None)
    ctx.obj = RunContext(
        workdir=Path.cwd(),
        runner=CommandRunner(dry_run=dry_run),
        config=config,
        assume_yes=assume_yes,
    )
    if dry_run and not quiet:
        click.secho("🔍 Dry run: nothing will be changed", fg="yellow", err=True)


# ── Register command groups ────────────────────────────────────

from cubeops.ui.cli.db import db  # noqa: E402
from cubeops.ui.cli.dev import dev  # noqa: E402
from cubeops.ui.cli.image import image  # noqa: E402
from cubeops.ui.cli.project import project  # noqa: E402
from cubeops.ui.cli.repo import repo  # noqa: E402

cli.add_command(image)
cli.add_command(db)
cli.add_command(repo)
cli.add_command(dev)
cli.add_command(project)


if __name__ == "__main__":
    cli()
