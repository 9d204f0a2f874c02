"""
Controller - wires store notifications, the work queue and the Reconciler.

Notifications:
- Run changed         -> enqueue the Run's key
- BuildRun changed    -> enqueue the controlling Run's key (owner reference)
- Build changed       -> enqueue unfinished Runs in that namespace referencing it

Workers drain the queue with at most one in-flight reconcile per key. Errors
decide the requeue:
- success with requeue_after -> add_after (bounded poll fallback)
- TransientError (incl. ConflictError, DependencyNotFoundError) -> rate-limited requeue
- PermanentError -> logged and dropped
- anything else -> logged with traceback and rate-limited requeue
"""

import logging
import threading
from typing import Any, Optional

from shiprun.errors import PermanentError, TransientError
from shiprun.reconciler import Reconciler
from shiprun.schemas import Build, BuildRun, Run
from shiprun.store import DELETED, ObjectStore
from shiprun.workqueue import WorkQueue

logger = logging.getLogger(__name__)


class Controller:
    """
    Runs the reconcile loop over a bounded worker pool.

    Usage:
        controller = Controller(reconciler, store, workers=4)
        controller.start()          # watch the store, enqueue existing Runs
        controller.run(stop_event)  # block until stop_event is set
    """

    def __init__(
        self,
        reconciler: Reconciler,
        store: ObjectStore,
        queue: Optional[WorkQueue] = None,
        workers: int = 4,
    ):
        config = reconciler.context.config
        self._reconciler = reconciler
        self._store = store
        self._queue = queue or WorkQueue(
            base_delay=config.backoff_base_seconds,
            max_delay=config.backoff_max_seconds,
        )
        self._workers = workers
        self._unsubscribe = None

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    def start(self) -> None:
        """Subscribe to store changes and enqueue every existing Run."""
        if self._unsubscribe is None:
            self._unsubscribe = self._store.watch(self._on_event)
        self.resync()

    def stop(self) -> None:
        """Unsubscribe from the store and shut the queue down."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._queue.shutdown()

    def resync(self) -> int:
        """
        Enqueue every stored Run.

        Returns:
            Number of Runs enqueued
        """
        runs = self._store.list(Run.KIND)
        for run in runs:
            self._queue.add(run.metadata.key)
        return len(runs)

    def _on_event(self, event: str, obj: Any) -> None:
        if isinstance(obj, Run):
            if event != DELETED:
                self._queue.add(obj.metadata.key)
        elif isinstance(obj, BuildRun):
            owner = obj.metadata.controller_ref()
            if owner is not None and owner.kind == Run.KIND:
                self._queue.add(f"{obj.metadata.namespace}/{owner.name}")
        elif isinstance(obj, Build) and event != DELETED:
            for run in self._store.list(Run.KIND, obj.metadata.namespace):
                ref = run.spec.ref
                if ref is not None and ref.name == obj.metadata.name and not run.is_done():
                    self._queue.add(run.metadata.key)

    def process_next_item(self, timeout: Optional[float] = None) -> bool:
        """
        Take one key from the queue and reconcile it.

        Args:
            timeout: Seconds to wait for a key

        Returns:
            False if no key was available (timeout or shutdown)
        """
        key = self._queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self._reconcile(key)
        finally:
            self._queue.done(key)
        return True

    def _reconcile(self, key: str) -> None:
        try:
            result = self._reconciler.reconcile(key)
        except TransientError as e:
            delay = self._queue.add_rate_limited(key)
            logger.warning(
                "requeue %s in %.3fs: %s",
                key,
                delay,
                e,
                extra={"key": key, "event": "requeue", "metadata": {"error": type(e).__name__}},
            )
            return
        except PermanentError as e:
            self._queue.forget(key)
            logger.error(
                "dropping %s: %s",
                key,
                e,
                extra={"key": key, "event": "dropped"},
            )
            return
        except Exception:
            delay = self._queue.add_rate_limited(key)
            logger.exception(
                "unexpected error reconciling %s, requeue in %.3fs",
                key,
                delay,
                extra={"key": key, "event": "requeue"},
            )
            return

        self._queue.forget(key)
        if result.requeue_after is not None:
            self._queue.add_after(key, result.requeue_after)

    def run_until_idle(self, max_items: Optional[int] = None) -> int:
        """
        Process ready keys on the calling thread until none are left.

        Delayed keys (polls, backoffs) are not waited for.

        Returns:
            Number of keys processed
        """
        processed = 0
        while max_items is None or processed < max_items:
            if not self.process_next_item(timeout=0):
                break
            processed += 1
        return processed

    def run(self, stop_event: threading.Event) -> None:
        """
        Run worker threads until `stop_event` is set.

        Args:
            stop_event: Set to request shutdown
        """
        self.start()
        threads = [
            threading.Thread(target=self._worker, name=f"shiprun-worker-{i}", daemon=True)
            for i in range(self._workers)
        ]
        for thread in threads:
            thread.start()
        logger.info("controller started with %d workers", self._workers)

        stop_event.wait()

        self.stop()
        for thread in threads:
            thread.join()
        logger.info("controller stopped")

    def _worker(self) -> None:
        while self.process_next_item():
            pass
