"""
Shared terminal output for provisioning reports.
"""

from __future__ import annotations

import json

import click

from cubeops.core.models.plan import ProvisionAction, RunReport

_ACTION_ICONS = {
    ProvisionAction.SKIP: "⏭️ ",
    ProvisionAction.CREATE: "✨",
    ProvisionAction.REPAIR: "🔧",
    ProvisionAction.RECREATE: "♻️ ",
    ProvisionAction.REMOVE: "🗑️ ",
}


def print_report(report: RunReport, *, as_json: bool = False, title: str = "") -> None:
    """Print one line per step, then a summary line."""
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    if title:
        click.secho(title, fg="cyan", bold=True)
    for r in report.results:
        icon = _ACTION_ICONS.get(r.action, "•")
        if r.succeeded:
            detail = "already in place" if r.skipped else r.action.value
            if r.attempts > 1:
                detail = f"{detail}, ready after {r.attempts} checks"
            click.echo(f"   {icon} {r.resource:<40} ", nl=False)
            click.secho(detail, fg="green")
        else:
            click.echo(f"   {icon} {r.resource:<40} ", nl=False)
            click.secho(f"failed: {r.last_error}", fg="red")

    if report.aborted:
        click.secho("   ⛔ Stopped at the first failure", fg="red")
    color = {"ok": "green", "partial": "yellow", "failed": "red"}[report.status]
    click.secho(
        f"   {report.succeeded}/{report.total} ok, {report.skipped} unchanged",
        fg=color,
    )
