import copy
import logging
from datetime import datetime, timedelta, timezone

import pytest

from shiprun.config import ShiprunConfig
from shiprun.schemas import Build, Run
from shiprun.store import InMemoryObjectStore


NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

NAMESPACE = "build-pipeline"

BUILD_SPEC = {
    "source": {"url": "https://github.com/shipwright-io/build", "revision": "main"},
    "strategy": {"kind": "BuildStrategy", "name": "kaniko"},
    "output": {"image": "ghcr.io/shipwright-io/build/shipwright-build-controller:latest"},
}

BUILD_REF = {"kind": "Build", "apiVersion": "shipwright.io/v1alpha1", "name": "image-build"}


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def run_doc(name="image-build", namespace=NAMESPACE, **fields) -> dict:
    """A Run document; with no spec fields it references Build image-build."""
    if "ref" not in fields and "spec" not in fields:
        fields["ref"] = dict(BUILD_REF)
    spec = {k: v for k, v in fields.items() if v is not None}
    return {
        "apiVersion": "tekton.dev/v1alpha1",
        "kind": "Run",
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def embedded_spec(payload=None, kind="Build", api_version="shipwright.io/v1alpha1") -> dict:
    return {
        "kind": kind,
        "apiVersion": api_version,
        "spec": copy.deepcopy(BUILD_SPEC) if payload is None else payload,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def store(clock):
    return InMemoryObjectStore(clock=clock)


@pytest.fixture
def config():
    return ShiprunConfig(
        poll_interval_seconds=10,
        attempt_deadline_seconds=30,
        dependency_grace_period_seconds=60,
    )


@pytest.fixture
def make_run():
    """Factory for Run objects (not stored)."""
    def _make(name="image-build", namespace=NAMESPACE, **fields) -> Run:
        return Run.from_dict(run_doc(name, namespace, **fields))
    return _make


@pytest.fixture
def make_build():
    """Factory for Build objects (not stored)."""
    def _make(name="image-build", namespace=NAMESPACE, spec=None) -> Build:
        return Build.from_dict({
            "apiVersion": "shipwright.io/v1alpha1",
            "kind": "Build",
            "metadata": {"name": name, "namespace": namespace},
            "spec": copy.deepcopy(BUILD_SPEC) if spec is None else spec,
        })
    return _make


@pytest.fixture
def build_spec():
    """A valid build definition payload (fresh copy)."""
    return copy.deepcopy(BUILD_SPEC)


@pytest.fixture
def make_embedded():
    """Factory for spec.spec blocks of an embedded Run."""
    return embedded_spec


@pytest.fixture(autouse=True)
def restore_shiprun_logger():
    """setup_logging() reconfigures the "shiprun" logger; undo it after each test."""
    logger = logging.getLogger("shiprun")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate
