"""
shiprun.schemas - Object schemas for the adapter boundary.

Run -> (validate) -> (translate) -> BuildRun -> BuildRunStatus -> RunStatus

Kinds:
1. Run: The orchestrator's custom task invocation (consumed and status-mutated)
2. BuildRun: The native execution request derived from an accepted Run
3. Build: A stored build definition that a Run may reference by name

Every kind round-trips through to_dict()/from_dict() using the camelCase wire
field names.
"""

from .meta import ObjectMeta, OwnerReference
from .conditions import (
    CONDITION_SUCCEEDED,
    Condition,
    ConditionStatus,
    get_condition,
    set_condition,
)
from .duration import DurationError, parse_duration, format_duration
from .build import (
    BUILD_API_VERSION,
    BUILD_KIND,
    Build,
    BuildOutput,
    BuildSource,
    BuildSpec,
    BuildSpecError,
    BuildStrategyRef,
)
from .run import (
    RUN_API_VERSION,
    RUN_KIND,
    BuildReference,
    BuildTarget,
    EmbeddedBuild,
    EmbeddedRunSpec,
    Param,
    Run,
    RunRef,
    RunSpec,
    RunStatus,
    TargetError,
)
from .buildrun import (
    BUILDRUN_KIND,
    BuildOverrides,
    BuildRun,
    BuildRunSpec,
    BuildRunStatus,
    InlineBuild,
    NamedBuild,
)

__all__ = [
    # Metadata
    "ObjectMeta",
    "OwnerReference",
    # Conditions
    "CONDITION_SUCCEEDED",
    "Condition",
    "ConditionStatus",
    "get_condition",
    "set_condition",
    # Durations
    "DurationError",
    "parse_duration",
    "format_duration",
    # Build
    "BUILD_API_VERSION",
    "BUILD_KIND",
    "Build",
    "BuildOutput",
    "BuildSource",
    "BuildSpec",
    "BuildSpecError",
    "BuildStrategyRef",
    # Run
    "RUN_API_VERSION",
    "RUN_KIND",
    "BuildReference",
    "BuildTarget",
    "EmbeddedBuild",
    "EmbeddedRunSpec",
    "Param",
    "Run",
    "RunRef",
    "RunSpec",
    "RunStatus",
    "TargetError",
    # BuildRun
    "BUILDRUN_KIND",
    "BuildOverrides",
    "BuildRun",
    "BuildRunSpec",
    "BuildRunStatus",
    "InlineBuild",
    "NamedBuild",
]
