"""
Tests for the development workflow — playground setup, package links, launch config, debug session.
"""

import json
import os

import pytest

from cubeops.core.engine.tasks import TaskGroup
from cubeops.core.errors import UsageError
from cubeops.core.services.devenv import (
    DEBUG_PACKAGES,
    build_frontend,
    build_sql_api,
    default_repo_dir,
    install_dependencies,
    link_packages,
    link_resources,
    setup_playground,
    start_debug_session,
    unlink_packages,
    write_launch_config,
)


class RecordingTasks(TaskGroup):
    """TaskGroup that records spawns instead of starting processes."""

    def __init__(self):
        super().__init__()
        self.spawned = []
        self.terminated = 0

    def spawn(self, name, argv, *, cwd=None, env=None, log_path=None):
        self.spawned.append({"name": name, "argv": list(argv), "cwd": cwd, "env": env, "log_path": log_path})
        return None

    def install_handlers(self):
        pass

    def terminate_all(self):
        self.terminated += 1


@pytest.fixture
def repo_dir(tmp_path):
    path = tmp_path / "cube" / "branches" / "develop"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def project(tmp_path):
    path = tmp_path / "cubejs-test-project"
    path.mkdir()
    return path


@pytest.fixture
def tasks(ctx):
    ctx.tasks = RecordingTasks()
    return ctx.tasks


@pytest.fixture
def sql_binary(repo_dir):
    binary = repo_dir / "rust" / "cubesql" / "target" / "debug" / "cubesqld"
    binary.parent.mkdir(parents=True)
    binary.write_text("")
    return binary


# ── Package links ────────────────────────────────────────────────────


class TestLinks:
    def test_one_link_per_debug_package(self, repo_dir, project):
        links = link_resources(repo_dir, project)
        assert len(links) == len(DEBUG_PACKAGES)
        gateway = links[0]
        assert gateway.package_name == "@cubejs-backend/api-gateway"
        assert gateway.package_dir == str(repo_dir / "packages" / "cubejs-api-gateway")

    def test_link_packages(self, ctx, repo_dir, project, mock_driver, mock_registry):
        report = link_packages(ctx, repo_dir, project, registry=mock_registry)
        assert report.total == len(DEBUG_PACKAGES)
        assert mock_driver.calls("create")[0] == "package-link:@cubejs-backend/api-gateway"

    def test_link_keeps_going_after_a_failure(self, ctx, repo_dir, project, mock_driver, mock_registry):
        mock_driver.set_failure("package-link:@cubejs-backend/api-gateway", "create", "no package.json")
        report = link_packages(ctx, repo_dir, project, registry=mock_registry)
        assert report.failed == 1
        assert report.total == len(DEBUG_PACKAGES)

    def test_unlink_in_reverse(self, ctx, repo_dir, project, mock_driver, mock_registry):
        unlink_packages(ctx, repo_dir, project, registry=mock_registry)
        assert mock_driver.calls("teardown")[0] == "package-link:@cubejs-backend/base-driver"

    def test_missing_checkout(self, ctx, tmp_path, project):
        with pytest.raises(UsageError, match="Source checkout"):
            link_packages(ctx, tmp_path / "nope", project)

    def test_default_repo_dir(self, ctx, tmp_path):
        assert default_repo_dir(ctx) == tmp_path / "projects" / "cube" / "branches" / "develop"


# ── Launch configuration ─────────────────────────────────────────────


class TestLaunchConfig:
    def test_writes_launch_json(self, ctx, repo_dir, project):
        target = write_launch_config(ctx, repo_dir, test_project_dir=project)
        assert target == repo_dir / ".vscode" / "launch.json"
        launch = json.loads(target.read_text())
        assert str(project) in [c.get("cwd") for c in launch["configurations"]]

    def test_overwrite_needs_confirmation(self, ctx, repo_dir):
        target = repo_dir / ".vscode" / "launch.json"
        target.parent.mkdir()
        target.write_text("{}")
        ctx.assume_yes = False
        with pytest.raises(UsageError):
            write_launch_config(ctx, repo_dir)
        assert target.read_text() == "{}"

    def test_overwrite_after_yes(self, ctx, repo_dir):
        target = repo_dir / ".vscode" / "launch.json"
        target.parent.mkdir()
        target.write_text("{}")
        write_launch_config(ctx, repo_dir)
        assert "configurations" in json.loads(target.read_text())


# ── Debug session ────────────────────────────────────────────────────


class TestDebugSession:
    def test_full_session(self, ctx, runner, tasks, repo_dir, project, sql_binary, mock_registry):
        runner.on("yarn dev", exit_code=130)
        code = start_debug_session(ctx, repo_dir, project, registry=mock_registry)

        assert code == 130
        assert [t["name"] for t in tasks.spawned] == ["TypeScript watch", "SQL API"]
        assert tasks.spawned[1]["argv"] == [str(sql_binary)]
        assert tasks.spawned[1]["env"]["RUST_BACKTRACE"] == "1"
        assert runner.call("cargo build")["cwd"] == repo_dir / "rust" / "cubesql"

        dev = runner.call("yarn dev")
        assert dev["cwd"] == project
        assert dev["env"]["NODE_OPTIONS"] == "--inspect-brk=0.0.0.0:9229"
        assert tasks.terminated == 1

    def test_frees_busy_ports(self, ctx, runner, tasks, repo_dir, project, sql_binary, mock_registry):
        runner.on("lsof -t -iTCP:9229 -sTCP:LISTEN", stdout="4242\n")
        start_debug_session(ctx, repo_dir, project, link=False, registry=mock_registry)
        assert runner.ran("kill") == ["kill -9 4242"]

    def test_skip_build_and_link(self, ctx, runner, tasks, repo_dir, project, sql_binary, mock_driver, mock_registry):
        start_debug_session(ctx, repo_dir, project, link=False, build_sql=False, registry=mock_registry)
        assert not runner.ran("cargo")
        assert mock_driver.calls("create") == []

    def test_missing_sql_binary_stops_helpers(self, ctx, runner, tasks, repo_dir, project, mock_registry):
        with pytest.raises(UsageError, match="cubesqld"):
            start_debug_session(ctx, repo_dir, project, link=False, registry=mock_registry)
        assert [t["name"] for t in tasks.spawned] == ["TypeScript watch"]
        assert tasks.terminated == 1
        assert not runner.ran("yarn dev")

    def test_missing_project(self, ctx, tasks, repo_dir, tmp_path):
        with pytest.raises(UsageError, match="Test project"):
            start_debug_session(ctx, repo_dir, tmp_path / "nope")
        assert tasks.spawned == []


# ── Playground setup ─────────────────────────────────────────────────


def _age(path, seconds):
    """Move a file's mtime ``seconds`` into the past."""
    stamp = path.stat().st_mtime - seconds
    os.utime(path, (stamp, stamp))


@pytest.fixture
def built_checkout(repo_dir, sql_binary):
    """A checkout whose dependencies, frontend and SQL API are all current."""
    (repo_dir / "node_modules").mkdir()
    (repo_dir / "yarn.lock").write_text("# lock\n")
    _age(repo_dir / "yarn.lock", 60)
    (repo_dir / ".yarn_install_timestamp").touch()

    component = repo_dir / "packages" / "cubejs-playground" / "src" / "App.tsx"
    component.parent.mkdir(parents=True)
    component.write_text("export {};\n")
    _age(component, 60)
    index = repo_dir / "packages" / "cubejs-playground" / "build" / "index.html"
    index.parent.mkdir(parents=True)
    index.write_text("<html></html>\n")

    source = repo_dir / "rust" / "cubesql" / "src" / "main.rs"
    source.parent.mkdir(parents=True)
    source.write_text("fn main() {}\n")
    _age(source, 60)
    return repo_dir


class TestPlayground:
    @pytest.fixture(autouse=True)
    def cargo_home(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CARGO_HOME", str(tmp_path / "cargo"))

    def test_fresh_checkout_runs_every_step(self, ctx, runner, tasks, repo_dir):
        steps = setup_playground(ctx, repo_dir)

        assert [(s.name, s.action) for s in steps] == [
            ("rust", "skipped"),
            ("dependencies", "ran"),
            ("frontend", "ran"),
            ("typescript watch", "skipped"),
            ("sql api", "ran"),
        ]
        assert runner.ran("yarn") == ["yarn install", "yarn build", "yarn build"]
        assert runner.calls[-1]["cwd"] == repo_dir / "rust" / "cubesql"
        assert (repo_dir / ".yarn_install_timestamp").is_file()

    def test_watch_started_when_not_running(self, ctx, runner, tasks, repo_dir):
        runner.on("pgrep", exit_code=1)
        setup_playground(ctx, repo_dir)
        assert tasks.spawned[0]["argv"] == ["yarn", "tsc:watch"]
        assert tasks.spawned[0]["log_path"] == repo_dir / "typescript-watch.log"
        assert tasks.terminated == 0

    def test_current_checkout_skips_builds(self, ctx, runner, tasks, built_checkout):
        steps = setup_playground(ctx, built_checkout)
        assert all(s.action == "skipped" for s in steps)
        assert not runner.ran("yarn")
        assert not runner.ran("cargo")

    def test_changed_lockfile_reinstalls(self, ctx, runner, tasks, built_checkout):
        _age(built_checkout / ".yarn_install_timestamp", 120)
        assert install_dependencies(ctx, built_checkout).action == "ran"
        assert runner.ran("yarn install")

    def test_changed_component_rebuilds_frontend(self, ctx, runner, built_checkout):
        _age(built_checkout / "packages" / "cubejs-playground" / "build" / "index.html", 120)
        assert build_frontend(ctx, built_checkout).action == "ran"
        assert runner.call("yarn build")["cwd"] == built_checkout
        assert runner.calls[-1]["cwd"] == built_checkout / "packages" / "cubejs-playground"

    def test_changed_rust_source_rebuilds_sql_api(self, ctx, runner, built_checkout, sql_binary):
        _age(sql_binary, 120)
        assert build_sql_api(ctx, built_checkout).action == "ran"
        assert runner.ran("cargo build")

    def test_missing_checkout(self, ctx, runner, tmp_path):
        with pytest.raises(UsageError, match="Source checkout"):
            setup_playground(ctx, tmp_path / "nope")
        assert runner.history == []
