"""
Condition schema shared by Run and BuildRun status blocks.

Both sides use a single top-level condition of type "Succeeded" whose status
is "True", "False" or "Unknown". The orchestrator reacts only to status and
reason; message is free text for humans.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence

from .meta import format_time, parse_time


CONDITION_SUCCEEDED = "Succeeded"


class ConditionStatus(str, Enum):
    """Tri-state condition status."""
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class Condition:
    """
    A single observed condition.

    Attributes:
        type: Condition type (always "Succeeded" for the top-level condition)
        status: True, False or Unknown
        reason: Stable machine-readable token (e.g. "Running", "ValidationFailed")
        message: Human-readable detail
        last_transition_time: When status last changed
    """
    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ConditionStatus.TRUE, ConditionStatus.FALSE)

    def same_state(self, other: Optional["Condition"]) -> bool:
        """Compare everything except last_transition_time."""
        if other is None:
            return False
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": self.type,
            "status": self.status.value,
        }
        if self.reason:
            result["reason"] = self.reason
        if self.message:
            result["message"] = self.message
        if self.last_transition_time is not None:
            result["lastTransitionTime"] = format_time(self.last_transition_time)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Condition":
        return cls(
            type=data["type"],
            status=ConditionStatus(data.get("status", "Unknown")),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=parse_time(data.get("lastTransitionTime")),
        )


def get_condition(conditions: Sequence[Condition], type_: str) -> Optional[Condition]:
    """Find a condition by type."""
    for condition in conditions:
        if condition.type == type_:
            return condition
    return None


def set_condition(
    conditions: Sequence[Condition],
    condition: Condition,
    now: datetime,
) -> tuple[Condition, ...]:
    """
    Return a new condition tuple with `condition` replacing its type.

    lastTransitionTime is kept when status does not change, and stamped with
    `now` when it does (or when the condition is new).
    """
    existing = get_condition(conditions, condition.type)
    if existing is not None and existing.status == condition.status:
        stamped = replace(condition, last_transition_time=existing.last_transition_time or now)
    else:
        stamped = replace(condition, last_transition_time=now)

    result = []
    placed = False
    for current in conditions:
        if current.type == condition.type:
            result.append(stamped)
            placed = True
        else:
            result.append(current)
    if not placed:
        result.append(stamped)
    return tuple(result)
