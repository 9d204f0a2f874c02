"""
BuildRun schema - the native execution request derived from an accepted Run.

shiprun creates BuildRuns and reads their status; the build engine owns
everything else. The spec is written once at creation (the single exception is
a pre-start timeout sync), and the status is written only by the engine.

    apiVersion: shipwright.io/v1alpha1
    kind: BuildRun
    metadata: {namespace, name (= Run name), ownerReferences: [Run]}
    spec:
      buildRef: {name}        # exactly one of buildRef / buildSpec
      buildSpec: {...}
      timeout: "1h0m0s"
      overrides: {sourceURL, sourceRevision, outputImage}
    status:
      conditions: [{type: Succeeded, status, reason, message}]
      results: {digest, size, commit-sha, ...}
      completionTime: ...
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from .build import BUILD_API_VERSION, BuildSpec
from .conditions import CONDITION_SUCCEEDED, Condition, get_condition
from .duration import format_duration, parse_duration
from .meta import ObjectMeta, format_time, parse_time


BUILDRUN_KIND = "BuildRun"


@dataclass(frozen=True)
class NamedBuild:
    """spec.buildRef - run a stored Build."""
    name: str


@dataclass(frozen=True)
class InlineBuild:
    """spec.buildSpec - run an embedded build definition."""
    spec: BuildSpec


BuildRunBuild = Union[NamedBuild, InlineBuild]


@dataclass(frozen=True)
class BuildOverrides:
    """Per-run overrides of the referenced build definition."""
    source_url: Optional[str] = None
    source_revision: Optional[str] = None
    output_image: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        result: dict[str, str] = {}
        if self.source_url is not None:
            result["sourceURL"] = self.source_url
        if self.source_revision is not None:
            result["sourceRevision"] = self.source_revision
        if self.output_image is not None:
            result["outputImage"] = self.output_image
        return result

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "BuildOverrides":
        data = data or {}
        return cls(
            source_url=data.get("sourceURL"),
            source_revision=data.get("sourceRevision"),
            output_image=data.get("outputImage"),
        )


@dataclass(frozen=True)
class BuildRunSpec:
    build: BuildRunBuild
    overrides: BuildOverrides = field(default_factory=BuildOverrides)
    timeout: Optional[timedelta] = None

    def __post_init__(self):
        if not isinstance(self.build, (NamedBuild, InlineBuild)):
            raise ValueError(f"unsupported build reference: {self.build!r}")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if isinstance(self.build, NamedBuild):
            result["buildRef"] = {"name": self.build.name}
        else:
            result["buildSpec"] = self.build.spec.to_dict()
        overrides = self.overrides.to_dict()
        if overrides:
            result["overrides"] = overrides
        if self.timeout is not None:
            result["timeout"] = format_duration(self.timeout)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildRunSpec":
        has_ref = data.get("buildRef") is not None
        has_spec = data.get("buildSpec") is not None
        if has_ref == has_spec:
            raise ValueError("BuildRun spec needs exactly one of buildRef/buildSpec")
        if has_ref:
            build: BuildRunBuild = NamedBuild(name=data["buildRef"]["name"])
        else:
            build = InlineBuild(spec=BuildSpec.from_dict(data["buildSpec"]))
        timeout = data.get("timeout")
        return cls(
            build=build,
            overrides=BuildOverrides.from_dict(data.get("overrides")),
            timeout=parse_duration(timeout) if timeout is not None else None,
        )


@dataclass(frozen=True)
class BuildRunStatus:
    """
    Execution status written by the build engine.

    Attributes:
        conditions: Ordered conditions; "Succeeded" is the one shiprun reads
        results: Terminal result values (image digest, size, source commit)
        start_time: When the engine started the build
        completion_time: When the build finished
    """
    conditions: tuple[Condition, ...] = field(default_factory=tuple)
    results: dict[str, str] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None

    @property
    def succeeded_condition(self) -> Optional[Condition]:
        return get_condition(self.conditions, CONDITION_SUCCEEDED)

    @property
    def has_started(self) -> bool:
        return self.start_time is not None or bool(self.conditions)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        if self.results:
            result["results"] = dict(self.results)
        if self.start_time is not None:
            result["startTime"] = format_time(self.start_time)
        if self.completion_time is not None:
            result["completionTime"] = format_time(self.completion_time)
        return result

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "BuildRunStatus":
        data = data or {}
        return cls(
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions", [])),
            results={str(k): str(v) for k, v in (data.get("results") or {}).items()},
            start_time=parse_time(data.get("startTime")),
            completion_time=parse_time(data.get("completionTime")),
        )


@dataclass
class BuildRun:
    """A native execution request."""
    metadata: ObjectMeta
    spec: BuildRunSpec
    status: BuildRunStatus = field(default_factory=BuildRunStatus)

    KIND = BUILDRUN_KIND
    API_VERSION = BUILD_API_VERSION

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "apiVersion": self.API_VERSION,
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
        }
        status = self.status.to_dict()
        if status:
            result["status"] = status
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildRun":
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=BuildRunSpec.from_dict(data["spec"]),
            status=BuildRunStatus.from_dict(data.get("status")),
        )
