"""
Run schema - the orchestrator's custom task invocation.

A Run delegates one pipeline step to shiprun. The wire shape is owned by the
orchestrator and must stay exactly as it is:

    apiVersion: tekton.dev/v1alpha1
    kind: Run
    metadata: {namespace, name, ...}
    spec:
      ref: {kind, apiVersion, name}            # exactly one of ref / spec
      spec: {kind, apiVersion, spec: <payload>}
      timeout: "1h"
      retries: 0
      params: [{name, value}]
    status:
      conditions: [{type, status, reason, message}]
      results: {name: value}
      observedGeneration: 1

Decoding is lenient: a Run that violates the accepted grammar still decodes,
so the validator can report every violation instead of a decode crash.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from .build import BuildSpec, BuildSpecError
from .conditions import CONDITION_SUCCEEDED, Condition, get_condition
from .meta import ObjectMeta, format_time, parse_time


RUN_API_VERSION = "tekton.dev/v1alpha1"
RUN_KIND = "Run"

ParamValue = Union[str, list[str]]


@dataclass(frozen=True)
class RunRef:
    """spec.ref - a pointer to a pre-existing build definition."""
    kind: str = ""
    api_version: str = ""
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind, "apiVersion": self.api_version}
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunRef":
        return cls(
            kind=data.get("kind", ""),
            api_version=data.get("apiVersion", ""),
            name=data.get("name", ""),
        )


@dataclass(frozen=True)
class EmbeddedRunSpec:
    """spec.spec - an inline build definition; payload is decoded lazily."""
    kind: str = ""
    api_version: str = ""
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind, "apiVersion": self.api_version}
        if self.payload is not None:
            result["spec"] = self.payload
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmbeddedRunSpec":
        return cls(
            kind=data.get("kind", ""),
            api_version=data.get("apiVersion", ""),
            payload=data.get("spec"),
        )


@dataclass(frozen=True)
class Param:
    name: str
    value: ParamValue

    @property
    def is_string(self) -> bool:
        return isinstance(self.value, str)

    def to_dict(self) -> dict[str, Any]:
        value = self.value if isinstance(self.value, str) else list(self.value)
        return {"name": self.name, "value": value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Param":
        value = data.get("value", "")
        if isinstance(value, (list, tuple)):
            value = [str(v) for v in value]
        elif not isinstance(value, str):
            value = str(value)
        return cls(name=data.get("name", ""), value=value)


@dataclass(frozen=True)
class BuildReference:
    """Accepted target: run an existing Build by name."""
    name: str


@dataclass(frozen=True)
class EmbeddedBuild:
    """Accepted target: run an inline build definition."""
    spec: BuildSpec


BuildTarget = Union[BuildReference, EmbeddedBuild]


class TargetError(ValueError):
    """Raised when a RunSpec does not resolve to exactly one build target."""
    pass


@dataclass(frozen=True)
class RunSpec:
    """
    The Run spec as it appears on the wire.

    `ref` and `embedded` are both optional here because that is the
    orchestrator's schema; consumers go through `target`, which enforces the
    exactly-one rule and yields a two-case variant.
    """
    ref: Optional[RunRef] = None
    embedded: Optional[EmbeddedRunSpec] = None
    timeout: Optional[str] = None
    retries: Any = 0
    params: tuple[Param, ...] = field(default_factory=tuple)

    @property
    def target(self) -> BuildTarget:
        """
        Resolve the build target.

        Raises:
            TargetError: If both or neither of ref/spec are set, or the
                embedded payload is not a valid build definition
        """
        if (self.ref is None) == (self.embedded is None):
            raise TargetError("exactly one of ref/spec required")
        if self.ref is not None:
            return BuildReference(name=self.ref.name)
        try:
            return EmbeddedBuild(spec=BuildSpec.from_payload(self.embedded.payload))
        except BuildSpecError as e:
            raise TargetError(f"invalid embedded build spec: {e}") from e

    def param(self, name: str) -> Optional[Param]:
        for param in self.params:
            if param.name == name:
                return param
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.ref is not None:
            result["ref"] = self.ref.to_dict()
        if self.embedded is not None:
            result["spec"] = self.embedded.to_dict()
        if self.timeout is not None:
            result["timeout"] = self.timeout
        if self.retries:
            result["retries"] = self.retries
        if self.params:
            result["params"] = [p.to_dict() for p in self.params]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunSpec":
        data = data or {}
        timeout = data.get("timeout")
        return cls(
            ref=RunRef.from_dict(data["ref"]) if data.get("ref") is not None else None,
            embedded=(
                EmbeddedRunSpec.from_dict(data["spec"])
                if data.get("spec") is not None else None
            ),
            timeout=str(timeout) if timeout is not None else None,
            retries=data.get("retries", 0),
            params=tuple(Param.from_dict(p) for p in data.get("params") or []),
        )


@dataclass(frozen=True)
class RunStatus:
    """
    Observed state of a Run, written only by shiprun.

    Attributes:
        conditions: Ordered conditions; the "Succeeded" condition drives the orchestrator
        results: Named result values copied from the finished BuildRun
        observed_generation: Spec generation the status was computed from
        start_time: When shiprun first accepted the Run
        completion_time: When the Run reached a terminal state
        extra_fields: Adapter-specific details (e.g. the tracked BuildRun name)
    """
    conditions: tuple[Condition, ...] = field(default_factory=tuple)
    results: dict[str, str] = field(default_factory=dict)
    observed_generation: int = 0
    start_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    extra_fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        if self.results:
            result["results"] = dict(self.results)
        if self.observed_generation:
            result["observedGeneration"] = self.observed_generation
        if self.start_time is not None:
            result["startTime"] = format_time(self.start_time)
        if self.completion_time is not None:
            result["completionTime"] = format_time(self.completion_time)
        if self.extra_fields:
            result["extraFields"] = dict(self.extra_fields)
        return result

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "RunStatus":
        data = data or {}
        return cls(
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions", [])),
            results={str(k): str(v) for k, v in (data.get("results") or {}).items()},
            observed_generation=data.get("observedGeneration", 0),
            start_time=parse_time(data.get("startTime")),
            completion_time=parse_time(data.get("completionTime")),
            extra_fields=dict(data.get("extraFields") or {}),
        )


@dataclass
class Run:
    """A custom task invocation."""
    metadata: ObjectMeta
    spec: RunSpec = field(default_factory=RunSpec)
    status: RunStatus = field(default_factory=RunStatus)

    KIND = RUN_KIND
    API_VERSION = RUN_API_VERSION

    @property
    def succeeded_condition(self) -> Optional[Condition]:
        return get_condition(self.status.conditions, CONDITION_SUCCEEDED)

    def is_done(self) -> bool:
        """True once the Succeeded condition is True or False."""
        condition = self.succeeded_condition
        return condition is not None and condition.is_terminal

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
    def from_dict(cls, data: dict[str, Any]) -> "Run":
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=RunSpec.from_dict(data.get("spec") or {}),
            status=RunStatus.from_dict(data.get("status")),
        )
