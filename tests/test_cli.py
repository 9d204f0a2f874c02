import json

import pytest
import yaml
from click.testing import CliRunner
from shiprun import __version__
from shiprun.cli import main
from shiprun.config import load_config
from shiprun.errors import ConflictError, TransientError
from shiprun.schemas import (
    CONDITION_SUCCEEDED,
    BuildRun,
    BuildRunStatus,
    Condition,
    ConditionStatus,
)
from shiprun.store import FileObjectStore


RUN = {
    "apiVersion": "tekton.dev/v1alpha1",
    "kind": "Run",
    "metadata": {"name": "image-build", "namespace": "build-pipeline"},
    "spec": {
        "ref": {"kind": "Build", "apiVersion": "shipwright.io/v1alpha1", "name": "image-build"},
        "timeout": "1h",
        "params": [{"name": "shp-source-revision", "value": "main"}],
    },
}

BUILD = {
    "apiVersion": "shipwright.io/v1alpha1",
    "kind": "Build",
    "metadata": {"name": "image-build", "namespace": "build-pipeline"},
    "spec": {
        "source": {"url": "https://github.com/shipwright-io/sample-go", "contextDir": "docker-build"},
        "strategy": {"kind": "ClusterBuildStrategy", "name": "kaniko"},
        "output": {"image": "registry.example.com/sample-go:latest"},
    },
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    home = tmp_path / "shiprun_home"
    monkeypatch.setenv("SHIPRUN_HOME", str(home))
    return home


@pytest.fixture
def configured(home, tmp_path):
    home.mkdir(parents=True)
    store_dir = tmp_path / "store"
    (home / "config.yaml").write_text(yaml.safe_dump({
        "store_path": str(store_dir),
        "log_level": "WARNING",
    }))
    return store_dir


def _write(path, *docs):
    path.write_text(yaml.safe_dump_all(docs, sort_keys=False))
    return str(path)


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_validate_accepted(runner, home, tmp_path):
    result = runner.invoke(main, ["validate", _write(tmp_path / "run.yaml", RUN)])
    assert result.exit_code == 0
    assert "build-pipeline/image-build accepted" in result.output


def test_validate_accepts_json(runner, home, tmp_path):
    path = tmp_path / "run.json"
    path.write_text(json.dumps(RUN))
    result = runner.invoke(main, ["validate", str(path)])
    assert result.exit_code == 0


def test_validate_rejected(runner, home, tmp_path):
    run = dict(RUN, spec=dict(RUN["spec"], retries=2, params=[{"name": "abrbitrary-param", "value": "x"}]))
    result = runner.invoke(main, ["validate", _write(tmp_path / "run.yaml", run)])
    assert result.exit_code == 1
    assert "rejected" in result.output
    assert "retries are not supported" in result.output
    assert "Unsupported value:" in result.output


def test_validate_needs_a_run(runner, home, tmp_path):
    result = runner.invoke(main, ["validate", _write(tmp_path / "build.yaml", BUILD)])
    assert result.exit_code == 1
    assert "expected exactly one Run document, found 0" in result.output


def test_validate_malformed_yaml(runner, home, tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("kind: Run\nmetadata: [unclosed\n")
    result = runner.invoke(main, ["validate", str(path)])
    assert result.exit_code == 1
    assert "invalid YAML" in result.output


def test_translate(runner, home, tmp_path):
    result = runner.invoke(main, ["translate", _write(tmp_path / "run.yaml", RUN)])
    assert result.exit_code == 0
    buildrun = yaml.safe_load(result.output)
    assert buildrun["kind"] == "BuildRun"
    assert buildrun["metadata"]["name"] == "image-build"
    assert buildrun["spec"] == {
        "buildRef": {"name": "image-build"},
        "overrides": {"sourceRevision": "main"},
        "timeout": "1h0m0s",
    }


def test_translate_is_stable(runner, home, tmp_path):
    path = _write(tmp_path / "run.yaml", RUN)
    first = runner.invoke(main, ["translate", path]).output
    assert runner.invoke(main, ["translate", path]).output == first


def test_translate_rejected(runner, home, tmp_path):
    run = dict(RUN, spec={"retries": 1})
    result = runner.invoke(main, ["translate", _write(tmp_path / "run.yaml", run)])
    assert result.exit_code == 1
    assert "exactly one of" in result.output


def test_controller_requires_config(runner, home):
    result = runner.invoke(main, ["controller", "--once"])
    assert result.exit_code == 1
    assert "Config not loaded" in result.output
    assert "shiprun init" in result.output


def test_apply_controller_status(runner, configured, tmp_path):
    manifest = _write(tmp_path / "pipeline.yaml", BUILD, RUN)

    result = runner.invoke(main, ["apply", manifest])
    assert result.exit_code == 0, result.output
    assert "Build build-pipeline/image-build created" in result.output
    assert "Run build-pipeline/image-build created" in result.output

    result = runner.invoke(main, ["controller", "--once"])
    assert result.exit_code == 0, result.output
    assert "reconciled" in result.output

    store = FileObjectStore(configured)
    buildrun = store.get(BuildRun.KIND, "build-pipeline", "image-build")
    assert buildrun.spec.overrides.source_revision == "main"

    result = runner.invoke(main, ["status", "build-pipeline/image-build"])
    assert result.exit_code == 0
    assert "Unknown (AwaitingExecution)" in result.output

    store.update_status(BuildRun(
        metadata=buildrun.metadata,
        spec=buildrun.spec,
        status=BuildRunStatus(
            conditions=(Condition(CONDITION_SUCCEEDED, ConditionStatus.TRUE, "Succeeded"),),
            results={"digest": "sha256:abc"},
        ),
    ))
    runner.invoke(main, ["controller", "--once"])

    result = runner.invoke(main, ["status", "build-pipeline/image-build"])
    assert "True (Succeeded)" in result.output
    assert "digest: sha256:abc" in result.output


def test_apply_twice_configures(runner, configured, tmp_path):
    manifest = _write(tmp_path / "build.yaml", BUILD)
    runner.invoke(main, ["apply", manifest])
    result = runner.invoke(main, ["apply", manifest])
    assert result.exit_code == 0
    assert "Build build-pipeline/image-build configured" in result.output


def test_apply_retries_conflicting_update(runner, configured, tmp_path, monkeypatch):
    manifest = _write(tmp_path / "build.yaml", BUILD)
    runner.invoke(main, ["apply", manifest])

    real_update = FileObjectStore.update
    calls = []

    def update_once_stale(self, obj):
        calls.append(obj.metadata.key)
        if len(calls) == 1:
            raise ConflictError("resourceVersion changed")
        return real_update(self, obj)

    monkeypatch.setattr(FileObjectStore, "update", update_once_stale)
    result = runner.invoke(main, ["apply", manifest])

    assert result.exit_code == 0, result.output
    assert "Build build-pipeline/image-build configured" in result.output
    assert calls == ["build-pipeline/image-build", "build-pipeline/image-build"]


def test_apply_gives_up_on_store_failures(runner, configured, tmp_path, monkeypatch):
    def unavailable(self, obj):
        raise TransientError("store unavailable")

    monkeypatch.setattr(FileObjectStore, "create", unavailable)
    result = runner.invoke(main, ["apply", _write(tmp_path / "build.yaml", BUILD)])

    assert result.exit_code == 1
    assert "Build build-pipeline/image-build failed: store unavailable" in result.output


def test_apply_unknown_kind(runner, configured, tmp_path):
    manifest = _write(tmp_path / "cm.yaml", {"kind": "ConfigMap", "metadata": {"name": "x"}})
    result = runner.invoke(main, ["apply", manifest])
    assert result.exit_code == 1
    assert "unsupported kind: ConfigMap" in result.output


def test_status_unknown_run(runner, configured):
    result = runner.invoke(main, ["status", "build-pipeline/nope"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_status_bad_key(runner, configured):
    result = runner.invoke(main, ["status", "no-namespace"])
    assert result.exit_code == 2


def test_init_command_creates_files(runner, home):
    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert "Initialized shiprun config" in result.output

    assert (home / "config.yaml").exists()
    assert (home / ".env").exists()

    config = load_config()
    assert config.workers == 4
    assert config.env_file == str(home / ".env")


def test_init_does_not_overwrite_without_force(runner, home):
    home.mkdir(parents=True)
    (home / "config.yaml").write_text("workers: 2\n")

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 1
    assert "Config already exists" in result.output
    assert (home / "config.yaml").read_text() == "workers: 2\n"


def test_init_force_overwrites(runner, home):
    home.mkdir(parents=True)
    (home / "config.yaml").write_text("workers: 2\n")

    result = runner.invoke(main, ["init", "--force"])
    assert result.exit_code == 0
    assert yaml.safe_load((home / "config.yaml").read_text())["workers"] == 4
