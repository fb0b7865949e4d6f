"""
Tests for the driver package flow — version choice, build, tests, publish, package.json restore.
"""

import json

import pytest

from cubeops.core.errors import UsageError
from cubeops.core.services.driver_package import (
    NPM_DEFAULT_TEST,
    DriverPackagePipeline,
    default_package_dir,
    has_tests,
    read_manifest,
    write_manifest_version,
)
from cubeops.core.services.pipeline import Stage

MANIFEST = {
    "name": "doris-cubejs-driver",
    "version": "1.2.3",
    "scripts": {"build": "tsc", "test": "jest"},
}


@pytest.fixture
def package(tmp_path):
    path = tmp_path / "cubejs-doris-driver" / "branches" / "main"
    path.mkdir(parents=True)
    (path / "package.json").write_text(json.dumps(MANIFEST, indent=4) + "\n")
    return path


def _pipeline(ctx, package, **kwargs) -> DriverPackagePipeline:
    pipeline = DriverPackagePipeline(ctx, package, **kwargs)
    # Toolchain installs are covered by their own tests
    pipeline.stage_deps = lambda: None
    return pipeline


# ── package.json ─────────────────────────────────────────────────────


class TestManifest:
    def test_read(self, package):
        assert read_manifest(package)["version"] == "1.2.3"

    def test_missing(self, tmp_path):
        with pytest.raises(UsageError, match="package.json not found"):
            read_manifest(tmp_path)

    def test_write_version_keeps_other_fields(self, package):
        write_manifest_version(package, "1.2.4")
        text = (package / "package.json").read_text()
        assert text.endswith("}\n")
        assert '\n  "version": "1.2.4",' in text
        assert json.loads(text)["scripts"] == MANIFEST["scripts"]

    def test_default_dir_from_config(self, ctx, tmp_path):
        assert default_package_dir(ctx) == tmp_path / "projects" / "cubejs-doris-driver" / "branches" / "main"


class TestHasTests:
    def test_real_script(self, tmp_path):
        assert has_tests(tmp_path, {"scripts": {"test": "jest"}})

    def test_npm_placeholder_is_no_tests(self, tmp_path):
        assert not has_tests(tmp_path, {"scripts": {"test": NPM_DEFAULT_TEST}})

    def test_no_scripts(self, tmp_path):
        assert not has_tests(tmp_path, {})

    @pytest.mark.parametrize("dirname", ["test", "tests"])
    def test_test_directory(self, tmp_path, dirname):
        (tmp_path / dirname).mkdir()
        assert has_tests(tmp_path, {"scripts": {"test": NPM_DEFAULT_TEST}})


# ── Flow ─────────────────────────────────────────────────────────────


class TestPublish:
    def test_unpublished_version_is_used_as_is(self, ctx, runner, package):
        runner.on("npm view", exit_code=1, stderr="npm ERR! code E404")
        report = _pipeline(ctx, package).run()

        assert report.ok
        assert report.pushed == ["doris-cubejs-driver@1.2.3"]
        assert runner.ran("yarn") == [
            "yarn install",
            "yarn build",
            "yarn test --passWithNoTests",
            "yarn publish --new-version 1.2.3 --access public",
        ]
        assert runner.call("yarn publish")["cwd"] == package

    def test_published_version_is_bumped(self, ctx, runner, package):
        runner.on("npm view doris-cubejs-driver@1.2.3", stdout="1.2.3")
        report = _pipeline(ctx, package).run()

        assert report.ok
        assert runner.ran("yarn publish") == ["yarn publish --new-version 1.2.4 --access public"]

    def test_bump_skips_every_published_version(self, ctx, runner, package):
        runner.on("npm view doris-cubejs-driver@1.2.3", stdout="1.2.3")
        runner.on("npm view doris-cubejs-driver@1.3.0", stdout="1.3.0")
        pipeline = _pipeline(ctx, package, bump="minor")
        assert pipeline.run().ok
        assert pipeline.version == "1.3.1"

    def test_bumped_version_is_in_manifest_while_publishing(self, ctx, runner, package):
        runner.on("npm view doris-cubejs-driver@1.2.3", stdout="1.2.3")
        seen = []
        pipeline = _pipeline(ctx, package)
        publish = pipeline.stage_push

        def push():
            seen.append(read_manifest(package)["version"])
            publish()

        pipeline.stage_push = push
        pipeline.run()
        assert seen == ["1.2.4"]

    def test_manifest_restored_after_publish(self, ctx, runner, package):
        original = (package / "package.json").read_text()
        runner.on("npm view doris-cubejs-driver@1.2.3", stdout="1.2.3")
        _pipeline(ctx, package).run()
        assert (package / "package.json").read_text() == original

    def test_failed_publish_restores_manifest(self, ctx, runner, package):
        original = (package / "package.json").read_text()
        runner.on("npm view doris-cubejs-driver@1.2.3", stdout="1.2.3")
        runner.on("yarn publish", exit_code=1, stderr="error Couldn't publish package")

        report = _pipeline(ctx, package).run()

        assert not report.ok
        assert report.failed_stage.name is Stage.PUSH
        assert report.exit_code == 1
        assert (package / "package.json").read_text() == original

    def test_failing_tests_stop_before_publish(self, ctx, runner, package):
        runner.on("yarn test", exit_code=1)
        report = _pipeline(ctx, package).run()

        assert report.failed_stage.name is Stage.BUILD
        assert not runner.ran("npm view")
        assert not runner.ran("yarn publish")

    def test_no_tests_skips_test_step(self, ctx, runner, package):
        data = read_manifest(package)
        data["scripts"]["test"] = NPM_DEFAULT_TEST
        (package / "package.json").write_text(json.dumps(data))
        runner.on("npm view", exit_code=1)

        assert _pipeline(ctx, package).run().ok
        assert not runner.ran("yarn test")

    def test_build_only_never_publishes(self, ctx, runner, package):
        runner.on("npm view", exit_code=1)
        report = _pipeline(ctx, package, build_only=True).run()
        assert report.ok
        assert report.stage(Stage.PUSH).status == "skipped"
        assert not runner.ran("yarn publish")

    def test_access_level(self, ctx, runner, package):
        runner.on("npm view", exit_code=1)
        _pipeline(ctx, package, access="restricted").run()
        assert runner.ran("yarn publish")[0].endswith("--access restricted")

    def test_missing_package_dir(self, ctx, runner, tmp_path):
        with pytest.raises(UsageError, match="Package directory not found"):
            _pipeline(ctx, tmp_path / "nope").run()
        assert runner.history == []

    def test_dry_run_leaves_manifest(self, tmp_path, package):
        from conftest import FakeRunner

        from cubeops.core.context import RunContext

        runner = FakeRunner(dry_run=True)
        runner.on("npm view doris-cubejs-driver@1.2.3", stdout="1.2.3")
        original = (package / "package.json").read_text()
        dry = RunContext(workdir=tmp_path, runner=runner, interactive=False)

        pipeline = _pipeline(dry, package)
        assert pipeline.run().ok
        assert pipeline.version == "1.2.4"
        assert (package / "package.json").read_text() == original
