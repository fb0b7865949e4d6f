"""
CLI commands for building and publishing images.

Thin wrappers over ``cubeops.core.services.pipeline`` and
``cubeops.core.services.driver_package``.
"""

from __future__ import annotations

import json
import sys

import click

_STATUS_ICONS = {"done": "✅", "error": "❌", "skipped": "⏭️ ", "pending": "⚪"}


@click.group()
def image() -> None:
    """Images — build, tag and push the server images and the driver package."""


def _print_pipeline(report, as_json: bool, title: str | None = None) -> None:
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    click.secho(title or f"🐳 {report.flow} image", fg="cyan", bold=True)
    for stage in report.stages:
        icon = _STATUS_ICONS.get(stage.status, "•")
        line = f"   {icon} {stage.name.value:<13} {stage.label}"
        if stage.status == "done":
            line += f"  ({stage.duration_ms / 1000:.1f}s)"
        click.echo(line)
        if stage.error:
            click.secho(f"      {stage.error}", fg="red")

    for ref in report.pushed:
        click.secho(f"   📤 {ref}", fg="green")
    if report.ok:
        click.secho(f"   Done in {report.total_duration_ms / 1000:.1f}s", fg="green")


def _mode_options(f):
    f = click.option("--auto-version", is_flag=True, help="Also push the next free x.y.z tag.")(f)
    f = click.option("--push-only", is_flag=True, help="Only push an image that was already built.")(f)
    f = click.option("--build-only", is_flag=True, help="Only build and tag, don't push.")(f)
    f = click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")(f)
    return f


# ── Build ───────────────────────────────────────────────────────


@image.command("build-base")
@click.option("--image-name", default=None, help="Local image name.")
@click.option("--image-tag", default=None, help="Local image tag.")
@click.option("--remote-image-name", default=None, help="Image name to push as.")
@click.option("--remote-image-tag", default=None, help="Tag to push as.")
@click.option("--dockerfile", default=None, type=click.Path(dir_okay=False),
              help="Dockerfile to build with (default: the checkout's latest.Dockerfile).")
@click.option("--show-diff", is_flag=True, help="Page through the full diff before merging.")
@_mode_options
@click.pass_obj
def build_base(
    run,
    image_name: str | None,
    image_tag: str | None,
    remote_image_name: str | None,
    remote_image_tag: str | None,
    dockerfile: str | None,
    show_diff: bool,
    build_only: bool,
    push_only: bool,
    auto_version: bool,
    as_json: bool,
) -> None:
    """Build the server image from the release branch and push it."""
    from cubeops.core.services.pipeline import BaseImagePipeline, PublishOptions

    defaults = run.config.images
    options = PublishOptions(
        image_name=image_name or defaults.image_name,
        image_tag=image_tag or defaults.image_tag,
        remote_image_name=remote_image_name or defaults.remote_image_name,
        remote_image_tag=remote_image_tag or defaults.remote_image_tag,
        build_only=build_only,
        push_only=push_only,
        auto_version=auto_version,
    )

    def show_preview(preview) -> None:
        if as_json:
            return
        click.secho(f"📦 Changes {preview.base_ref}..{preview.source_ref}", fg="cyan", bold=True)
        click.echo(f"   Packages: {', '.join(preview.changed_packages) or 'none'}")
        for line in preview.changed_files:
            click.echo(f"   {line}")
        if preview.diff:
            click.echo_via_pager(preview.diff)

    pipeline = BaseImagePipeline(
        run, options, dockerfile=dockerfile, show_diff=show_diff, on_preview=show_preview,
    )
    report = pipeline.run()
    _print_pipeline(report, as_json)
    if not report.ok:
        sys.exit(report.exit_code)


@image.command("build-final")
@click.option("--base-image", default=None, help="Image to layer the drivers on.")
@click.option("--image-name", default=None, help="Local image name.")
@click.option("--image-tag", default="latest", show_default=True, help="Image tag.")
@click.option("--remote-image", default=None, help="Image name to push as.")
@click.option("--driver", "drivers", multiple=True, help="npm package to install (repeatable).")
@_mode_options
@click.pass_obj
def build_final(
    run,
    base_image: str | None,
    image_name: str | None,
    image_tag: str,
    remote_image: str | None,
    drivers: tuple[str, ...],
    build_only: bool,
    push_only: bool,
    auto_version: bool,
    as_json: bool,
) -> None:
    """Build the published image: base image plus database drivers."""
    from cubeops.core.services.pipeline import FinalImagePipeline, PublishOptions

    defaults = run.config.images
    options = PublishOptions(
        image_name=image_name or defaults.final_image_name,
        image_tag=image_tag,
        remote_image_name=remote_image or defaults.final_remote_image_name,
        build_only=build_only,
        push_only=push_only,
        auto_version=auto_version,
    )
    pipeline = FinalImagePipeline(
        run,
        options,
        base_image=base_image or defaults.base_image,
        packages=list(drivers) or defaults.driver_packages,
    )
    report = pipeline.run()
    _print_pipeline(report, as_json)
    if not report.ok:
        sys.exit(report.exit_code)


@image.command("publish-driver")
@click.option("--package-dir", default=None, help="Package checkout (default: from cubeops.yml).")
@click.option("--access", default=None, help="npm access level (default: public).")
@click.option("--bump", type=click.Choice(["patch", "minor", "major"]), default="patch", show_default=True,
              help="Version part to bump when the current version is already published.")
@click.option("--build-only", is_flag=True, help="Build and test, don't publish.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def publish_driver(
    run,
    package_dir: str | None,
    access: str | None,
    bump: str,
    build_only: bool,
    as_json: bool,
) -> None:
    """Build, test and publish the database driver package to npm."""
    from cubeops.core.services.driver_package import DriverPackagePipeline, default_package_dir

    pipeline = DriverPackagePipeline(
        run,
        run.resolve(package_dir) if package_dir else default_package_dir(run),
        access=access or run.config.driver_package.access,
        build_only=build_only,
        bump=bump,
    )
    report = pipeline.run()
    _print_pipeline(report, as_json, title=f"📦 {pipeline.name or 'driver package'}")
    if not report.ok:
        sys.exit(report.exit_code)


# ── Registry ────────────────────────────────────────────────────


@image.command("tags")
@click.argument("name")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def tags(name: str, as_json: bool) -> None:
    """List the tags an image has in its registry."""
    from cubeops.core.models.version import next_version
    from cubeops.core.services.registry_tags import list_tags

    found = list_tags(name)
    following = str(next_version(found))
    if as_json:
        click.echo(json.dumps({"image": name, "tags": found, "next_version": following}, indent=2))
        return

    if not found:
        click.secho(f"No tags found for {name}.", fg="yellow")
    else:
        click.secho(f"🏷️  {name} ({len(found)} tags)", fg="cyan", bold=True)
        for tag in found:
            click.echo(f"   {tag}")
    click.echo(f"   Next version: {following}")


@image.command("next-version")
@click.argument("name")
def next_version_cmd(name: str) -> None:
    """Print the next free x.y.z tag for an image."""
    from cubeops.core.services.registry_tags import next_semantic_tag

    click.echo(next_semantic_tag(name))
