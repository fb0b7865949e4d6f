"""
Tests for CLI commands — global options, exit codes, and commands that
fail before touching docker, git or the network.
"""

import json
import logging

import click
import pytest
from click.testing import CliRunner

from cubeops.core.errors import ConfirmationDeclined, CubeOpsError, ExternalToolError
from cubeops.main import CubeOpsGroup, cli


@pytest.fixture(autouse=True)
def workspace(tmp_path, monkeypatch):
    """Run inside tmp_path with a cubeops.yml pointing the projects dir there."""
    (tmp_path / "cubeops.yml").write_text(f"projects_dir: {tmp_path / 'projects'}\n")
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield tmp_path
    root.handlers[:] = handlers
    root.setLevel(level)


def invoke(*args):
    return CliRunner().invoke(cli, list(args))


# ── Global options ───────────────────────────────────────────────────


class TestCLIGlobal:
    def test_help(self):
        result = invoke("--help")
        assert result.exit_code == 0
        for group in ("image", "db", "repo", "dev", "project"):
            assert group in result.output

    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_unknown_option(self):
        assert invoke("--colour").exit_code == 1

    def test_missing_config_file(self):
        result = invoke("-c", "missing.yml", "db", "info", "postgres")
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_invalid_config_file(self, workspace):
        (workspace / "cubeops.yml").write_text("unknown_setting: 1\n")
        result = invoke("db", "info", "postgres")
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


# ── Exit codes ───────────────────────────────────────────────────────


@click.group(cls=CubeOpsGroup)
def raising():
    pass


@raising.command("declined")
def declined():
    raise ConfirmationDeclined("Declined: Remove the release worktree?")


@raising.command("tool")
def tool():
    raise ExternalToolError("docker push reorc/cube:latest", 3, "denied: requested access to the resource is denied")


@raising.command("failure")
def failure():
    raise CubeOpsError("No free version found")


@raising.command("fine")
def fine():
    click.echo("ok")


class TestExitCodes:
    def test_declined_is_success(self):
        result = CliRunner().invoke(raising, ["declined"])
        assert result.exit_code == 0
        assert "Nothing was changed" in result.output

    def test_tool_exit_code_is_kept(self):
        result = CliRunner().invoke(raising, ["tool"])
        assert result.exit_code == 3
        assert "denied" in result.output

    def test_generic_failure(self):
        assert CliRunner().invoke(raising, ["failure"]).exit_code == 1

    def test_success(self):
        result = CliRunner().invoke(raising, ["fine"])
        assert result.exit_code == 0
        assert result.output == "ok\n"

    def test_non_standalone_returns_code(self):
        assert raising.main(["tool"], standalone_mode=False) == 3


# ── Commands ─────────────────────────────────────────────────────────


class TestDbInfo:
    def test_text(self):
        result = invoke("db", "info", "postgres")
        assert result.exit_code == 0
        assert "postgres 16.1" in result.output
        assert "Port:     5432" in result.output

    def test_json_with_override(self, workspace):
        (workspace / "cubeops.yml").write_text("databases:\n  mysql:\n    port: 13306\n")
        result = invoke("db", "info", "mysql", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["CUBEJS_DB_PORT"] == "13306"
        assert data["CUBEJS_DB_NAME"] == "test"

    def test_unknown_kind(self):
        assert invoke("db", "info", "oracle").exit_code == 1


class TestCommandsFailingEarly:
    def test_build_and_push_only(self):
        result = invoke("image", "build-base", "--build-only", "--push-only")
        assert result.exit_code == 1
        assert "mutually exclusive" in result.output

    def test_release_without_checkout(self):
        result = invoke("repo", "release")
        assert result.exit_code == 1
        assert "repo setup" in result.output

    def test_link_without_checkout(self):
        result = invoke("dev", "link")
        assert result.exit_code == 1
        assert "Source checkout not found" in result.output

    def test_setup_without_checkout(self):
        result = invoke("dev", "setup")
        assert result.exit_code == 1
        assert "Source checkout not found" in result.output

    def test_publish_driver_without_checkout(self):
        result = invoke("image", "publish-driver")
        assert result.exit_code == 1
        assert "Package directory not found" in result.output

    def test_cleanup_needs_yes(self, workspace):
        project = workspace / "projects" / "cubejs-test-project"
        project.mkdir(parents=True)
        result = invoke("project", "cleanup")
        assert result.exit_code == 1
        assert "--yes" in result.output
        assert project.is_dir()


class TestLaunchConfigCommand:
    def test_writes_file(self, workspace):
        repo = workspace / "cube"
        repo.mkdir()
        result = invoke("dev", "launch-config", "--repo-dir", str(repo), "--project-dir", "demo")
        assert result.exit_code == 0
        launch = json.loads((repo / ".vscode" / "launch.json").read_text())
        assert str(workspace / "demo") in [c.get("cwd") for c in launch["configurations"]]

