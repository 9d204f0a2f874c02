"""
Reconciler - drives one Run towards its terminal state.

Each call re-reads the Run and derives the full target state from current
object contents (level-triggered), so duplicate or coalesced notifications are
harmless:

    Unvalidated -> Rejected (terminal)
                -> AwaitingExecution -> Running -> Succeeded (terminal)
                                                -> Failed (terminal)

Execution flow of reconcile(key):
1. Read the Run; gone -> nothing to do
2. Deleting -> delete the owned BuildRun, release the finalizer
3. Terminal -> no-op, no writes
4. BuildRun exists -> the Run was accepted earlier and stays accepted;
   propagate a pre-start timeout change, ignore any other spec edit
5. No BuildRun yet -> validate(); rejected -> terminal ValidationFailed status.
   Otherwise confirm a referenced Build exists (grace period), add the
   cleanup finalizer, translate() and ensure_execution()
6. mirror() the BuildRun status onto the Run; non-terminal -> poll again later

Store errors propagate: TransientError / ConflictError / DependencyNotFoundError
are requeued with backoff by the Controller.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from shiprun.config import ShiprunConfig
from shiprun.errors import (
    DependencyNotFoundError,
    PermanentError,
    TransientError,
    ValidationError,
)
from shiprun.mirror import (
    REASON_BUILD_NOT_FOUND,
    StatusPatch,
    apply_patch,
    awaiting_execution,
    mirror,
    needs_update,
    rejected,
)
from shiprun.schemas import Build, BuildReference, BuildRun, Run
from shiprun.store import ObjectStore
from shiprun.tracker import ExecutionTracker
from shiprun.translator import translate
from shiprun.validation import validate

logger = logging.getLogger(__name__)


FINALIZER = "shiprun.io/buildrun-cleanup"


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def split_key(key: str) -> tuple[str, str]:
    """Split a "namespace/name" work-queue key."""
    namespace, sep, name = key.partition("/")
    if not sep or not namespace or not name:
        raise ValueError(f"Invalid key: {key!r} (expected 'namespace/name')")
    return namespace, name


@dataclass
class ReconcilerContext:
    """
    Dependencies injected into the Reconciler.

    Attributes:
        store: Backing store for Run, BuildRun and Build objects
        config: Controller settings (deadlines, grace periods, poll interval)
        clock: Wall clock used for timestamps and the dependency grace period
        monotonic: Monotonic clock used for the per-attempt deadline
    """
    store: ObjectStore
    config: ShiprunConfig = field(default_factory=ShiprunConfig)
    clock: Callable[[], datetime] = _utcnow
    monotonic: Callable[[], float] = time.monotonic


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one successful reconcile; requeue_after asks for a re-check."""
    requeue_after: Optional[float] = None


class _Deadline:
    def __init__(self, monotonic: Callable[[], float], seconds: float):
        self._monotonic = monotonic
        self._expires = monotonic() + seconds
        self._seconds = seconds

    def check(self, key: str) -> None:
        if self._monotonic() > self._expires:
            raise TransientError(
                f"reconcile of {key} exceeded its {self._seconds}s deadline"
            )


class Reconciler:
    """
    Reconciles Runs against their BuildRuns.

    Usage:
        store = InMemoryObjectStore()
        reconciler = Reconciler(ReconcilerContext(store=store))
        result = reconciler.reconcile("build-pipeline/image-build")
    """

    def __init__(self, context: ReconcilerContext):
        self._ctx = context
        self._store = context.store
        self._tracker = ExecutionTracker(context.store)

    @property
    def context(self) -> ReconcilerContext:
        return self._ctx

    @property
    def tracker(self) -> ExecutionTracker:
        return self._tracker

    def reconcile(self, key: str) -> ReconcileResult:
        """
        Reconcile the Run identified by `key`.

        Args:
            key: "namespace/name" of the Run

        Returns:
            ReconcileResult; requeue_after is set while the Run is not terminal

        Raises:
            TransientError: Store failure or deadline exceeded (requeue with backoff)
            ConflictError: Stale read or lost create race (requeue, re-read)
            DependencyNotFoundError: Referenced Build missing within the grace period
            PermanentError: `key` is not a "namespace/name" key
        """
        try:
            namespace, name = split_key(key)
        except ValueError as e:
            raise PermanentError(str(e)) from e
        deadline = _Deadline(self._ctx.monotonic, self._ctx.config.attempt_deadline_seconds)

        run = self._store.get(Run.KIND, namespace, name)
        if run is None:
            logger.debug("Run %s no longer exists", key)
            return ReconcileResult()

        if run.metadata.deletion_timestamp is not None:
            return self._finalize(run)

        if run.is_done():
            return ReconcileResult()

        deadline.check(key)
        buildrun = self._tracker.get_execution(run)
        if buildrun is not None:
            self._tracker.check_owner(run, buildrun)
            run = self._ensure_finalizer(run)
            buildrun = self._sync_execution(run, buildrun)
        else:
            result = validate(run)
            if not result.accepted:
                logger.info(
                    "rejected Run %s: %s",
                    key,
                    result.reason,
                    extra={"key": key, "event": "run_rejected"},
                )
                self._write_status(run, rejected(result.reason))
                return ReconcileResult()

            if isinstance(result.target, BuildReference):
                missing = self._check_build_exists(run, result.target)
                if missing is not None:
                    self._write_status(run, missing)
                    return ReconcileResult()
            deadline.check(key)
            run = self._ensure_finalizer(run)
            deadline.check(key)
            buildrun, _ = self._tracker.ensure_execution(run, translate(run))

        deadline.check(key)
        patch = mirror(run, buildrun.status)
        if patch is None:
            return ReconcileResult()
        self._write_status(run, patch, buildrun_name=buildrun.metadata.name)

        if patch.is_terminal:
            logger.info(
                "Run %s finished: %s (%s)",
                key,
                patch.condition.status.value,
                patch.condition.reason,
                extra={"key": key, "event": "run_finished"},
            )
            return ReconcileResult()
        return ReconcileResult(requeue_after=self._ctx.config.poll_interval_seconds)

    def _check_build_exists(self, run: Run, target: BuildReference) -> Optional[StatusPatch]:
        """
        Confirm the referenced Build exists.

        Returns:
            None if it exists, or a terminal BuildNotFound patch once the
            grace period has elapsed

        Raises:
            DependencyNotFoundError: Missing but still within the grace period
        """
        namespace = run.metadata.namespace
        if self._store.get(Build.KIND, namespace, target.name) is not None:
            return None

        message = f"Build {namespace}/{target.name} not found"
        created = run.metadata.creation_timestamp or self._ctx.clock()
        age = (self._ctx.clock() - created).total_seconds()
        if age < self._ctx.config.dependency_grace_period_seconds:
            self._write_status(run, awaiting_execution(f"waiting for {message}"))
            raise DependencyNotFoundError(Build.KIND, namespace, target.name)

        logger.warning(
            "giving up on Run %s: %s after %.0fs",
            run.metadata.key,
            message,
            age,
            extra={"key": run.metadata.key, "event": "build_not_found"},
        )
        return rejected(message, reason=REASON_BUILD_NOT_FOUND)

    def _sync_execution(self, run: Run, buildrun: BuildRun) -> BuildRun:
        """
        Keep an existing BuildRun in step with its Run.

        Admission is decided once. A Run whose BuildRun exists stays accepted
        even if its spec has since been edited into something validate() would
        reject; only a pre-start timeout change is carried over.
        """
        try:
            desired = translate(run)
        except ValidationError as e:
            logger.debug(
                "ignoring spec change to accepted Run %s: %s",
                run.metadata.key,
                e,
                extra={"key": run.metadata.key, "event": "spec_change_ignored"},
            )
            return buildrun
        return self._tracker.sync_timeout(run, buildrun, desired)

    def _ensure_finalizer(self, run: Run) -> Run:
        if FINALIZER in run.metadata.finalizers:
            return run
        metadata = replace(run.metadata, finalizers=[*run.metadata.finalizers, FINALIZER])
        return self._store.update(replace(run, metadata=metadata))

    def _finalize(self, run: Run) -> ReconcileResult:
        if FINALIZER not in run.metadata.finalizers:
            return ReconcileResult()
        self._tracker.delete_execution(run)
        finalizers = [f for f in run.metadata.finalizers if f != FINALIZER]
        self._store.update(replace(run, metadata=replace(run.metadata, finalizers=finalizers)))
        logger.info(
            "released finalizer on Run %s",
            run.metadata.key,
            extra={"key": run.metadata.key, "event": "run_finalized"},
        )
        return ReconcileResult()

    def _write_status(
        self,
        run: Run,
        patch: StatusPatch,
        buildrun_name: Optional[str] = None,
    ) -> Run:
        status = apply_patch(run, patch, self._ctx.clock())
        if buildrun_name is not None:
            status = replace(status, extra_fields={**status.extra_fields, "buildRunName": buildrun_name})
        if not needs_update(run, status):
            return run
        return self._store.update_status(replace(run, status=status))
