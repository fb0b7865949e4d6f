"""
Tests for toolchain installation — apt packages, Node.js, yarn, Rust, docker.
"""

import os

import pytest

from cubeops.core.errors import ExternalToolError, ReadinessTimeoutError
from cubeops.core.services.toolchain import (
    ensure_docker,
    ensure_node,
    ensure_rust,
    ensure_system_packages,
    ensure_toolchain,
    ensure_yarn,
    put_cargo_on_path,
    wait_for_docker,
)


@pytest.fixture(autouse=True)
def not_root(monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 1000)


class TestSystemPackages:
    def test_installs_only_missing(self, ctx, runner):
        runner.on("dpkg -s gcc", exit_code=1)
        statuses = ensure_system_packages(ctx, ["make", "gcc"])
        assert [(s.name, s.action) for s in statuses] == [("make", "skipped"), ("gcc", "installed")]
        assert runner.ran("sudo apt-get") == ["sudo apt-get update", "sudo apt-get install -y gcc"]

    def test_nothing_missing(self, ctx, runner):
        statuses = ensure_system_packages(ctx, ["make", "gcc"])
        assert all(s.action == "skipped" for s in statuses)
        assert not runner.ran("sudo")

    def test_runs_without_sudo_as_root(self, ctx, runner, monkeypatch):
        monkeypatch.setattr(os, "geteuid", lambda: 0)
        runner.on("dpkg -s", exit_code=1)
        ensure_system_packages(ctx, ["make"])
        assert runner.ran("apt-get install") == ["apt-get install -y make"]

    def test_install_failure_propagates(self, ctx, runner):
        runner.on("dpkg -s", exit_code=1)
        runner.on("sudo apt-get install", exit_code=100)
        with pytest.raises(ExternalToolError) as exc:
            ensure_system_packages(ctx, ["gcc"])
        assert exc.value.exit_code == 100


class TestNode:
    def test_matching_major_is_kept(self, ctx, runner):
        runner.on("node -v", stdout="v20.11.1")
        status = ensure_node(ctx, "20")
        assert (status.action, status.version) == ("skipped", "v20.11.1")
        assert not runner.ran("sudo")

    def test_other_major_is_replaced(self, ctx, runner):
        runner.on("node -v", stdout="v18.19.0")
        status = ensure_node(ctx, "20")
        assert status.action == "installed"
        assert "setup_20.x" in runner.ran("sudo bash -c")[0]
        assert runner.ran("sudo apt-get install -y nodejs")

    def test_missing_node(self, ctx, runner):
        runner.on_path = {"yarn"}
        assert ensure_node(ctx, "20").action == "installed"


class TestYarn:
    def test_present(self, ctx, runner):
        assert ensure_yarn(ctx).action == "skipped"

    def test_installed_with_npm(self, ctx, runner):
        runner.on_path = {"node"}
        assert ensure_yarn(ctx).action == "installed"
        assert runner.ran("sudo npm install -g yarn")


class TestDocker:
    def test_running_daemon(self, ctx, runner):
        assert wait_for_docker(ctx) == 1
        assert not runner.ran("sudo systemctl")

    def test_starts_stopped_daemon(self, ctx, runner, sleeps):
        runner.on("docker info", exit_code=1, times=2)
        assert wait_for_docker(ctx) == 2
        assert runner.ran("sudo systemctl start docker")
        assert sleeps == [0]

    def test_daemon_never_starts(self, ctx, runner):
        runner.on("docker info", exit_code=1)
        runner.on("sudo systemctl start", exit_code=1)
        with pytest.raises(ReadinessTimeoutError) as exc:
            wait_for_docker(ctx)
        assert exc.value.attempts == 3
        assert "systemctl status docker" in exc.value.hint

    def test_installs_engine_when_missing(self, ctx, runner, monkeypatch):
        monkeypatch.setenv("USER", "dev")
        runner.on_path = {"node", "yarn"}
        status = ensure_docker(ctx)
        assert status.action == "installed"
        installs = runner.ran("sudo apt-get install")
        assert "docker-ce" in installs[-1]
        assert runner.ran("sudo usermod -aG docker dev")
        assert runner.ran("sudo systemctl enable docker")


class TestEnsureToolchain:
    def test_second_run_installs_nothing(self, ctx, runner):
        runner.on("node -v", stdout="v20.11.1")
        statuses = ensure_toolchain(ctx)
        assert [s.name for s in statuses][-3:] == ["node", "yarn", "docker"]
        assert all(s.action == "skipped" for s in statuses)
        assert not runner.ran("sudo")

    def test_packages_from_config(self, ctx, runner):
        runner.on("node -v", stdout="v20.11.1")
        statuses = ensure_toolchain(ctx)
        assert [s.name for s in statuses][:-3] == ctx.config.system_packages

    def test_dry_run_prints_installs(self, tmp_path):
        from conftest import FakeRunner

        from cubeops.core.context import RunContext

        runner = FakeRunner(dry_run=True, on_path=set())
        dry = RunContext(workdir=tmp_path, runner=runner, interactive=False)
        statuses = ensure_toolchain(dry, packages=["gcc"], node_major="20")
        assert {s.name for s in statuses if s.action == "installed"} == {"node", "yarn", "docker"}
        assert runner.ran("sudo npm install -g yarn")


class TestRust:
    @pytest.fixture(autouse=True)
    def cargo_home(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CARGO_HOME", str(tmp_path / "cargo"))
        monkeypatch.setenv("PATH", "/usr/bin")
        return tmp_path / "cargo"

    def test_present(self, ctx, runner):
        runner.on("rustc --version", stdout="rustc 1.78.0")
        status = ensure_rust(ctx)
        assert (status.action, status.version) == ("skipped", "rustc 1.78.0")
        assert not runner.ran("bash")

    def test_installed_with_rustup_without_sudo(self, ctx, runner, cargo_home):
        runner.on_path = {"node", "yarn", "docker"}
        status = ensure_rust(ctx)
        assert status.action == "installed"
        assert "sh.rustup.rs" in runner.ran("bash -c")[0]
        assert not runner.ran("sudo")

    def test_cargo_bin_put_on_path(self, cargo_home):
        (cargo_home / "bin").mkdir(parents=True)
        assert put_cargo_on_path()
        assert os.environ["PATH"] == f"{cargo_home / 'bin'}{os.pathsep}/usr/bin"
        assert not put_cargo_on_path()

    def test_missing_cargo_dir_leaves_path(self, cargo_home):
        assert not put_cargo_on_path()
        assert os.environ["PATH"] == "/usr/bin"

    def test_toolchain_includes_rust_on_request(self, ctx, runner):
        runner.on("node -v", stdout="v20.11.1")
        names = [s.name for s in ensure_toolchain(ctx, rust=True)]
        assert names[-4:] == ["node", "yarn", "rust", "docker"]
