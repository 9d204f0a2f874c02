"""
Status mirroring - BuildRun status onto Run status.

| BuildRun Succeeded condition | Run Succeeded condition                       |
|------------------------------|-----------------------------------------------|
| absent / no condition yet    | Unknown, AwaitingExecution                    |
| Unknown                      | Unknown, Running                              |
| True                         | True, Succeeded, results copied verbatim      |
| False                        | False, native reason + message                |

Mirroring is monotonic: a Run whose Succeeded condition is already True or
False is never mirrored again.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from shiprun.schemas import (
    CONDITION_SUCCEEDED,
    BuildRunStatus,
    Condition,
    ConditionStatus,
    Run,
    RunStatus,
    set_condition,
)


REASON_AWAITING_EXECUTION = "AwaitingExecution"
REASON_RUNNING = "Running"
REASON_SUCCEEDED = "Succeeded"
REASON_FAILED = "Failed"
REASON_VALIDATION_FAILED = "ValidationFailed"
REASON_BUILD_NOT_FOUND = "BuildNotFound"


@dataclass(frozen=True)
class StatusPatch:
    """
    The change mirror() wants applied to a Run's status.

    Attributes:
        condition: The new Succeeded condition (lastTransitionTime unset)
        results: Result values to publish (only for success)
        completion_time: Native completion time for terminal outcomes
    """
    condition: Condition
    results: dict[str, str] = field(default_factory=dict)
    completion_time: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.condition.is_terminal


def awaiting_execution(message: str = "") -> StatusPatch:
    return StatusPatch(condition=Condition(
        type=CONDITION_SUCCEEDED,
        status=ConditionStatus.UNKNOWN,
        reason=REASON_AWAITING_EXECUTION,
        message=message,
    ))


def rejected(message: str, reason: str = REASON_VALIDATION_FAILED) -> StatusPatch:
    """The terminal patch for a Run that will never get a BuildRun."""
    return StatusPatch(condition=Condition(
        type=CONDITION_SUCCEEDED,
        status=ConditionStatus.FALSE,
        reason=reason,
        message=message,
    ))


def mirror(run: Run, status: Optional[BuildRunStatus]) -> Optional[StatusPatch]:
    """
    Map a BuildRun status onto the Run's condition vocabulary.

    Args:
        run: The Run being reconciled
        status: The BuildRun status, or None when no BuildRun exists yet

    Returns:
        The patch to apply, or None when the Run is already terminal
    """
    if run.is_done():
        return None

    native = status.succeeded_condition if status is not None else None
    if native is None:
        return awaiting_execution()

    if native.status == ConditionStatus.TRUE:
        return StatusPatch(
            condition=Condition(
                type=CONDITION_SUCCEEDED,
                status=ConditionStatus.TRUE,
                reason=REASON_SUCCEEDED,
                message=native.message,
            ),
            results=dict(status.results),
            completion_time=status.completion_time,
        )

    if native.status == ConditionStatus.FALSE:
        return StatusPatch(
            condition=Condition(
                type=CONDITION_SUCCEEDED,
                status=ConditionStatus.FALSE,
                reason=native.reason or REASON_FAILED,
                message=native.message,
            ),
            completion_time=status.completion_time,
        )

    return StatusPatch(condition=Condition(
        type=CONDITION_SUCCEEDED,
        status=ConditionStatus.UNKNOWN,
        reason=REASON_RUNNING,
        message=native.message,
    ))


def apply_patch(run: Run, patch: StatusPatch, now: datetime) -> RunStatus:
    """
    Compute the Run status that results from applying `patch`.

    startTime is stamped on the first patch; completionTime on the terminal
    one (native completion time when known, `now` otherwise).
    """
    current = run.status
    results = dict(current.results)
    results.update(patch.results)

    completion_time = current.completion_time
    if patch.is_terminal and completion_time is None:
        completion_time = patch.completion_time or now

    return replace(
        current,
        conditions=set_condition(current.conditions, patch.condition, now),
        results=results,
        observed_generation=run.metadata.generation,
        start_time=current.start_time or now,
        completion_time=completion_time,
    )


def needs_update(run: Run, new_status: RunStatus) -> bool:
    """True when writing `new_status` would change what the orchestrator sees."""
    current = run.status
    new_condition = next(
        (c for c in new_status.conditions if c.type == CONDITION_SUCCEEDED), None
    )
    if new_condition is None or not new_condition.same_state(run.succeeded_condition):
        return True
    return (
        current.results != new_status.results
        or current.observed_generation != new_status.observed_generation
        or current.completion_time != new_status.completion_time
        or current.start_time != new_status.start_time
        or current.extra_fields != new_status.extra_fields
    )
