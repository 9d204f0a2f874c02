"""Tests for the Controller: notifications, requeue classification, workers."""

import logging
import threading
import time
from dataclasses import replace

import pytest
from shiprun.controller import Controller
from shiprun.errors import DependencyNotFoundError, PermanentError, TransientError
from shiprun.reconciler import Reconciler, ReconcilerContext, ReconcileResult
from shiprun.schemas import (
    CONDITION_SUCCEEDED,
    BuildRun,
    BuildRunStatus,
    Condition,
    ConditionStatus,
    Run,
)
from shiprun.translator import translate
from shiprun.workqueue import WorkQueue


KEY = "build-pipeline/image-build"


@pytest.fixture
def queue(monotonic):
    return WorkQueue(base_delay=1.0, max_delay=8.0, clock=monotonic)


@pytest.fixture
def reconciler(store, config, clock, monotonic):
    return Reconciler(ReconcilerContext(store=store, config=config, clock=clock, monotonic=monotonic))


@pytest.fixture
def controller(reconciler, store, queue):
    return Controller(reconciler, store, queue=queue)


def _drain(queue):
    keys = []
    while True:
        key = queue.get(timeout=0)
        if key is None:
            return keys
        keys.append(key)
        queue.done(key)


class StubReconciler:
    """Plays back a scripted sequence of outcomes."""

    def __init__(self, store, outcomes):
        self.context = ReconcilerContext(store=store)
        self.outcomes = list(outcomes)
        self.calls = []

    def reconcile(self, key):
        self.calls.append(key)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestNotifications:

    def test_start_enqueues_existing_runs(self, controller, store, make_run):
        store.create(make_run(name="a"))
        store.create(make_run(name="b"))
        controller.start()
        assert sorted(_drain(controller.queue)) == ["build-pipeline/a", "build-pipeline/b"]

    def test_run_changes_enqueue_run(self, controller, store, make_run):
        controller.start()
        store.create(make_run())
        assert _drain(controller.queue) == [KEY]

    def test_buildrun_changes_enqueue_owner(self, controller, store, make_run):
        run = store.create(make_run(name="owner"))
        controller.start()
        _drain(controller.queue)

        buildrun = translate(run)
        buildrun.metadata.name = "differently-named"
        store.create(buildrun)
        assert _drain(controller.queue) == ["build-pipeline/owner"]

    def test_build_changes_enqueue_referencing_runs(self, controller, store, make_run, make_build):
        store.create(make_run(name="uses-it"))
        store.create(make_run(
            name="uses-other",
            ref={"kind": "Build", "apiVersion": "shipwright.io/v1alpha1", "name": "other"},
        ))
        store.create(make_run(name="elsewhere", namespace="other-ns"))
        controller.start()
        _drain(controller.queue)

        store.create(make_build())
        assert _drain(controller.queue) == ["build-pipeline/uses-it"]

    def test_deleted_run_not_enqueued(self, controller, store, make_run):
        store.create(make_run())
        controller.start()
        _drain(controller.queue)
        store.delete(Run.KIND, "build-pipeline", "image-build")
        assert _drain(controller.queue) == []

    def test_stop_unsubscribes(self, controller, store, make_run):
        controller.start()
        controller.stop()
        store.create(make_run())
        assert controller.queue.shutting_down
        assert len(controller.queue) == 0


class TestProcessing:

    def test_accepted_run_is_polled(self, controller, store, make_run, make_build, monotonic):
        store.create(make_build())
        store.create(make_run())
        controller.start()

        assert controller.run_until_idle() >= 1
        assert store.get(BuildRun.KIND, "build-pipeline", "image-build") is not None
        assert len(controller.queue) == 0
        assert controller.queue.pending_delayed() == 1

        monotonic.advance(10)
        assert controller.run_until_idle() == 1

    def test_buildrun_completion_finishes_run(self, controller, store, make_run, make_build):
        store.create(make_build())
        store.create(make_run())
        controller.start()
        controller.run_until_idle()

        buildrun = store.get(BuildRun.KIND, "build-pipeline", "image-build")
        store.update_status(replace(buildrun, status=BuildRunStatus(
            conditions=(Condition(CONDITION_SUCCEEDED, ConditionStatus.TRUE, "Succeeded"),),
            results={"digest": "sha256:abc"},
        )))
        controller.run_until_idle()

        run = store.get(Run.KIND, "build-pipeline", "image-build")
        assert run.succeeded_condition.status == ConditionStatus.TRUE
        assert run.status.results == {"digest": "sha256:abc"}

    def test_missing_build_is_requeued_with_backoff(self, controller, store, make_run, caplog):
        store.create(make_run())
        controller.start()

        with caplog.at_level(logging.WARNING, logger="shiprun.controller"):
            controller.run_until_idle()

        assert controller.queue.num_requeues(KEY) >= 1
        assert controller.queue.pending_delayed() == 1
        record = next(r for r in caplog.records if getattr(r, "event", None) == "requeue")
        assert record.metadata == {"error": "DependencyNotFoundError"}

    def test_empty_queue(self, controller):
        assert not controller.process_next_item(timeout=0)
        assert controller.run_until_idle() == 0


class TestErrorClassification:

    def _controller(self, store, queue, outcomes):
        stub = StubReconciler(store, outcomes)
        return Controller(stub, store, queue=queue), stub

    def test_transient_is_rate_limited(self, store, queue, monotonic):
        controller, stub = self._controller(store, queue, [
            TransientError("store unavailable"),
            TransientError("store unavailable"),
            ReconcileResult(),
        ])
        queue.add(KEY)

        assert controller.process_next_item(timeout=0)
        assert queue.num_requeues(KEY) == 1
        assert queue.get(timeout=0) is None

        monotonic.advance(1)
        assert controller.process_next_item(timeout=0)
        assert queue.num_requeues(KEY) == 2

        monotonic.advance(2)
        assert controller.process_next_item(timeout=0)
        assert queue.num_requeues(KEY) == 0
        assert queue.pending_delayed() == 0
        assert stub.calls == [KEY, KEY, KEY]

    def test_conflict_and_missing_dependency_are_transient(self, store, queue):
        controller, _ = self._controller(store, queue, [
            DependencyNotFoundError("Build", "build-pipeline", "image-build"),
        ])
        queue.add(KEY)
        controller.process_next_item(timeout=0)
        assert queue.num_requeues(KEY) == 1

    def test_permanent_is_dropped(self, store, queue, caplog):
        controller, _ = self._controller(store, queue, [PermanentError("cannot ever work")])
        queue.add(KEY)

        with caplog.at_level(logging.ERROR, logger="shiprun.controller"):
            controller.process_next_item(timeout=0)

        assert queue.num_requeues(KEY) == 0
        assert queue.pending_delayed() == 0
        assert len(queue) == 0
        assert any(getattr(r, "event", None) == "dropped" for r in caplog.records)

    def test_malformed_key_is_dropped(self, controller, caplog):
        controller.queue.add("no-namespace")

        with caplog.at_level(logging.ERROR, logger="shiprun.controller"):
            assert controller.process_next_item(timeout=0)

        assert controller.queue.num_requeues("no-namespace") == 0
        assert controller.queue.pending_delayed() == 0
        assert any(getattr(r, "event", None) == "dropped" for r in caplog.records)

    def test_unexpected_error_is_logged_and_requeued(self, store, queue, caplog):
        controller, _ = self._controller(store, queue, [RuntimeError("boom")])
        queue.add(KEY)

        with caplog.at_level(logging.ERROR, logger="shiprun.controller"):
            controller.process_next_item(timeout=0)

        assert queue.num_requeues(KEY) == 1
        record = next(r for r in caplog.records if getattr(r, "event", None) == "requeue")
        assert record.exc_info is not None

    def test_requeue_after_schedules_poll(self, store, queue, monotonic):
        controller, _ = self._controller(store, queue, [ReconcileResult(requeue_after=5)])
        queue.add(KEY)
        controller.process_next_item(timeout=0)
        assert queue.get(timeout=0) is None
        monotonic.advance(5)
        assert queue.get(timeout=0) == KEY


class TestWorkers:

    def test_run_until_stopped(self, store, config, make_run, make_build):
        reconciler = Reconciler(ReconcilerContext(store=store, config=config))
        controller = Controller(reconciler, store, workers=2)
        stop_event = threading.Event()
        thread = threading.Thread(target=controller.run, args=(stop_event,))
        thread.start()
        try:
            store.create(make_build())
            store.create(make_run())

            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                run = store.get(Run.KIND, "build-pipeline", "image-build")
                if run.succeeded_condition is not None:
                    break
                time.sleep(0.01)
        finally:
            stop_event.set()
            thread.join(timeout=5)

        assert not thread.is_alive()
        assert store.get(BuildRun.KIND, "build-pipeline", "image-build") is not None
        assert run.succeeded_condition.reason == "AwaitingExecution"
