"""
Tests for the image build and publish pipeline.
"""

import pytest

from cubeops.core.errors import UsageError
from cubeops.core.services.pipeline import (
    BaseImagePipeline,
    FinalImagePipeline,
    PublishOptions,
    Stage,
)


@pytest.fixture(autouse=True)
def registry_credentials(monkeypatch):
    monkeypatch.setenv("DOCKER_USERNAME", "builder")
    monkeypatch.setenv("DOCKER_PASSWORD", "s3cret")


def _options(**kwargs) -> PublishOptions:
    defaults = dict(
        image_name="reorc/cube",
        image_tag="latest",
        remote_image_name="recurvedata/recurve-cube",
        remote_image_tag="base",
    )
    defaults.update(kwargs)
    return PublishOptions(**defaults)


def _final(ctx, mock_registry, **kwargs) -> FinalImagePipeline:
    list_tags = kwargs.pop("list_tags", lambda name: [])
    return FinalImagePipeline(
        ctx,
        _options(**kwargs),
        base_image="recurvedata/recurve-cube-base:latest",
        registry=mock_registry,
        list_tags=list_tags,
    )


def _base(ctx, mock_registry, release_dir, **kwargs) -> BaseImagePipeline:
    pipeline = BaseImagePipeline(ctx, _options(**kwargs), registry=mock_registry)
    # Checkout and toolchain are covered by their own tests
    pipeline.stage_checkout = lambda: None
    pipeline.stage_deps = lambda: None
    pipeline.release_dir = release_dir
    return pipeline


# ── Options ──────────────────────────────────────────────────────────


class TestPublishOptions:
    def test_push_refs_include_latest_alias(self):
        assert _options().push_refs() == [
            "recurvedata/recurve-cube:base",
            "recurvedata/recurve-cube:latest",
        ]

    def test_latest_is_pushed_once(self):
        assert _options(remote_image_tag="latest").push_refs() == ["recurvedata/recurve-cube:latest"]

    def test_remote_defaults_to_local(self):
        opts = PublishOptions(image_name="reorc/cube", image_tag="1.0.0")
        assert opts.remote_ref == "reorc/cube:1.0.0"


# ── Stage selection ──────────────────────────────────────────────────


class TestStageSelection:
    def test_full_run_reaches_done(self, ctx, runner, mock_registry):
        report = _final(ctx, mock_registry).run()
        assert report.ok
        assert report.state is Stage.DONE
        assert report.pushed == ["recurvedata/recurve-cube:base", "recurvedata/recurve-cube:latest"]
        assert runner.ran("docker login --username builder --password-stdin")

    def test_final_flow_skips_checkout_and_build(self, ctx, mock_registry):
        report = _final(ctx, mock_registry).run()
        assert report.stage(Stage.CHECKOUT).status == "skipped"
        assert report.stage(Stage.BUILD).status == "skipped"
        assert report.stage(Stage.CONTAINERIZE).status == "done"

    def test_build_only_never_pushes(self, ctx, runner, mock_registry):
        report = _final(ctx, mock_registry, build_only=True).run()
        assert report.ok
        assert report.stage(Stage.TAG).status == "done"
        assert report.stage(Stage.AUTH).status == "skipped"
        assert report.stage(Stage.PUSH).status == "skipped"
        assert not runner.ran("docker push")
        assert not runner.ran("docker login")

    def test_push_only_skips_build(self, ctx, runner, mock_registry):
        report = _final(ctx, mock_registry, push_only=True).run()
        assert report.ok
        assert report.stage(Stage.CONTAINERIZE).status == "skipped"
        assert not runner.ran("docker build")
        assert runner.ran("docker push recurvedata/recurve-cube:base")

    def test_push_only_requires_local_image(self, ctx, runner, mock_registry):
        runner.on("docker image inspect reorc/cube:latest", exit_code=1)
        pipeline = _final(ctx, mock_registry, push_only=True)
        with pytest.raises(UsageError, match="not found locally"):
            pipeline.run()
        assert pipeline.report.stage(Stage.INIT).status == "error"
        assert not runner.ran("docker push")

    def test_build_only_and_push_only_conflict(self, ctx, mock_registry):
        with pytest.raises(UsageError):
            _final(ctx, mock_registry, build_only=True, push_only=True).run()


# ── Failures ─────────────────────────────────────────────────────────


class TestFailures:
    def test_build_failure_stops_before_containerize(self, ctx, runner, mock_registry, tmp_path):
        runner.on("yarn build", exit_code=1, stderr="error TS2304: Cannot find name")
        report = _base(ctx, mock_registry, tmp_path).run()

        assert not report.ok
        assert report.state is Stage.FAILED
        assert report.failed_stage.name is Stage.BUILD
        assert "TS2304" in report.failed_stage.error
        assert report.stage(Stage.CONTAINERIZE).status == "pending"
        assert not runner.ran("docker build")
        assert not runner.ran("yarn lerna")

    def test_exit_code_is_the_tools(self, ctx, runner, mock_registry):
        runner.on("docker push", exit_code=5, stderr="denied")
        report = _final(ctx, mock_registry).run()
        assert report.failed_stage.name is Stage.PUSH
        assert report.exit_code == 5

    def test_completed_stages_are_kept(self, ctx, runner, mock_registry):
        runner.on("docker push", exit_code=1)
        report = _final(ctx, mock_registry).run()
        assert report.stage(Stage.CONTAINERIZE).status == "done"
        assert report.stage(Stage.TAG).status == "done"

    def test_missing_credentials_is_a_usage_error(self, ctx, mock_registry, monkeypatch):
        monkeypatch.delenv("DOCKER_USERNAME")
        monkeypatch.delenv("DOCKER_PASSWORD")
        with pytest.raises(UsageError, match="DOCKER_USERNAME"):
            _final(ctx, mock_registry).run()

    def test_report_to_dict(self, ctx, runner, mock_registry):
        runner.on("docker build", exit_code=2)
        data = _final(ctx, mock_registry).run().to_dict()
        assert data["ok"] is False
        assert data["failed_stage"] == "containerize"
        assert [s["name"] for s in data["stages"]][:2] == ["init", "checkout"]


# ── Auto-version ─────────────────────────────────────────────────────


class TestAutoVersion:
    def test_pushes_next_version(self, ctx, runner, mock_registry):
        runner.on("docker image inspect", exit_code=1)
        pipeline = _final(ctx, mock_registry, auto_version=True, list_tags=lambda name: ["1.2.3", "latest"])
        report = pipeline.run()
        assert report.ok
        assert report.pushed[-1] == "recurvedata/recurve-cube:1.2.4"
        assert runner.ran("docker tag reorc/cube:latest recurvedata/recurve-cube:1.2.4")

    def test_conflict_bumps_patch(self, ctx, runner, mock_registry):
        runner.on("docker image inspect", exit_code=1)
        runner.on("docker image inspect recurvedata/recurve-cube:0.0.1", exit_code=0)
        runner.on("docker image inspect recurvedata/recurve-cube:0.0.2", exit_code=0)
        pipeline = _final(ctx, mock_registry, auto_version=True)
        assert pipeline.free_version() == "0.0.3"

    def test_private_registry_lister_gets_credentials(self, ctx, runner, mock_registry):
        runner.on("docker image inspect", exit_code=1)
        seen = []

        def lister(name, auth=None):
            seen.append((name, auth))
            return ["1.0.0"]

        report = _final(
            ctx, mock_registry, auto_version=True,
            remote_image_name="registry.example.com/cube", list_tags=lister,
        ).run()
        assert report.ok
        assert seen == [("registry.example.com/cube", ("builder", "s3cret"))]
        assert report.pushed[-1] == "registry.example.com/cube:1.0.1"

    def test_docker_hub_lister_is_anonymous(self, ctx, runner, mock_registry):
        runner.on("docker image inspect", exit_code=1)
        seen = []

        def lister(name, auth=None):
            seen.append((name, auth))
            return []

        assert _final(ctx, mock_registry, auto_version=True, list_tags=lister).run().ok
        assert seen == [("recurvedata/recurve-cube", None)]

    def test_no_auto_version_pushes_fixed_tags_only(self, ctx, runner, mock_registry):
        report = _final(ctx, mock_registry).run()
        assert len(runner.ran("docker push")) == 2
        assert len(report.pushed) == 2


# ── Flows ────────────────────────────────────────────────────────────


class TestFinalImage:
    def test_builds_from_rendered_dockerfile(self, ctx, runner, mock_registry):
        _final(ctx, mock_registry, build_only=True).run()
        build = runner.call("docker build")
        assert build["command"] == "docker build -t reorc/cube:latest -f Dockerfile . --no-cache"
        assert not build["cwd"].exists()  # temporary context is cleaned up


class TestBaseImage:
    def test_build_runs_yarn_in_order(self, ctx, runner, mock_registry, tmp_path):
        _base(ctx, mock_registry, tmp_path, build_only=True).stage_build()
        assert runner.ran("yarn") == ["yarn install", "yarn build", "yarn lerna run build"]

    def test_containerize_copies_changed_packages(self, ctx, runner, mock_registry, tmp_path):
        release = tmp_path / "release"
        (release / "packages" / "cubejs-server-core" / "dist").mkdir(parents=True)
        (release / "packages" / "cubejs-server-core" / "dist" / "index.js").write_text("x")
        (release / "packages" / "cubejs-docker").mkdir(parents=True)
        (release / "yarn.lock").write_text("# lock")

        pipeline = _base(ctx, mock_registry, release)
        pipeline.changed_packages = ["cubejs-server-core", "cubejs-gone"]
        pipeline.stage_containerize()

        docker_dir = release / "packages" / "cubejs-docker"
        assert (docker_dir / "packages" / "cubejs-server-core" / "dist" / "index.js").is_file()
        assert not (docker_dir / "packages" / "cubejs-gone").exists()
        assert (docker_dir / "yarn.lock").read_text() == "# lock"
        build = runner.call("docker build")
        assert "-f latest.Dockerfile" in build["command"]
        assert build["cwd"] == docker_dir
