"""
ExecutionTracker - maintains the 1:1 link between a Run and its BuildRun.

The BuildRun identity is derived from the Run (same namespace and name), so
every reconciliation finds the same object. An existing BuildRun is never
overwritten: the build engine may already be executing it. If a concurrent
reconciliation created it first, the create fails with AlreadyExistsError
(a ConflictError) and the caller re-fetches; the first create wins.
"""

import logging
from dataclasses import replace
from typing import Optional

from shiprun.errors import ConflictError
from shiprun.schemas import BuildRun, Run
from shiprun.store import ObjectStore

logger = logging.getLogger(__name__)


class ExecutionTracker:
    """Create-or-fetch access to the BuildRun owned by a Run."""

    def __init__(self, store: ObjectStore):
        self._store = store

    def get_execution(self, run: Run) -> Optional[BuildRun]:
        """Fetch the BuildRun for a Run, or None if it has not been created."""
        return self._store.get(BuildRun.KIND, run.metadata.namespace, run.metadata.name)

    def ensure_execution(self, run: Run, desired: BuildRun) -> tuple[BuildRun, bool]:
        """
        Make sure the Run's BuildRun exists.

        Args:
            run: The accepted Run
            desired: The translated BuildRun (used only if none exists yet)

        Returns:
            Tuple of (buildrun, created)

        Raises:
            ConflictError: A concurrent create won the race, or the existing
                BuildRun is controlled by a different Run
            TransientError: Store I/O failure
        """
        existing = self.get_execution(run)
        if existing is not None:
            self.check_owner(run, existing)
            return existing, False

        created = self._store.create(desired)
        logger.info(
            "created BuildRun %s for Run %s",
            created.metadata.key,
            run.metadata.key,
            extra={"key": run.metadata.key, "event": "buildrun_created"},
        )
        return created, True

    def sync_timeout(self, run: Run, buildrun: BuildRun, desired: BuildRun) -> BuildRun:
        """
        Propagate a timeout change to a BuildRun that has not started yet.

        Started BuildRuns are left alone; their spec is immutable from here on.

        Returns:
            The (possibly updated) BuildRun

        Raises:
            ConflictError: The BuildRun changed since it was read
            TransientError: Store I/O failure
        """
        if buildrun.status.has_started:
            return buildrun
        if buildrun.spec.timeout == desired.spec.timeout:
            return buildrun

        updated = replace(buildrun, spec=replace(buildrun.spec, timeout=desired.spec.timeout))
        logger.info(
            "propagating timeout change to BuildRun %s",
            buildrun.metadata.key,
            extra={"key": run.metadata.key, "event": "timeout_synced"},
        )
        return self._store.update(updated)

    def delete_execution(self, run: Run) -> bool:
        """
        Delete the Run's BuildRun if this Run controls it.

        Returns:
            True if a BuildRun was deleted
        """
        existing = self.get_execution(run)
        if existing is None:
            return False
        owner = existing.metadata.controller_ref()
        if owner is None or owner.uid != run.metadata.uid:
            return False
        self._store.delete(BuildRun.KIND, existing.metadata.namespace, existing.metadata.name)
        logger.info(
            "deleted BuildRun %s owned by Run %s",
            existing.metadata.key,
            run.metadata.key,
            extra={"key": run.metadata.key, "event": "buildrun_deleted"},
        )
        return True

    @staticmethod
    def check_owner(run: Run, buildrun: BuildRun) -> None:
        """Raise ConflictError if the BuildRun is controlled by a different Run."""
        owner = buildrun.metadata.controller_ref()
        if owner is not None and owner.uid and run.metadata.uid and owner.uid != run.metadata.uid:
            # A stale BuildRun from an earlier Run with the same name; wait for its cleanup.
            raise ConflictError(
                f"BuildRun {buildrun.metadata.key} is controlled by another Run (uid {owner.uid})"
            )
