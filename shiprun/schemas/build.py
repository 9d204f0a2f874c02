"""
Build schema - the strategy/source/output triple that describes one image build.

BuildSpec is the grammar that an embedded Run payload must deserialize into,
and the spec of stored Build objects that a Run may reference by name.
Only structural well-formedness is checked here; whether a strategy actually
exists or an image registry is reachable is the build engine's business.
"""

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional, Union

from .duration import DurationError, format_duration, parse_duration
from .meta import ObjectMeta


BUILD_API_VERSION = "shipwright.io/v1alpha1"
BUILD_KIND = "Build"

STRATEGY_KINDS = ("BuildStrategy", "ClusterBuildStrategy")
DEFAULT_STRATEGY_KIND = "BuildStrategy"

_URL_PATTERN = re.compile(r"^(https?|git|ssh)://[^\s/]+(/\S*)?$")
_SCP_PATTERN = re.compile(r"^[\w.-]+@[\w.-]+:\S+$")


class BuildSpecError(ValueError):
    """Raised when a payload is not a structurally valid build definition."""
    pass


def _require_mapping(data: Any, path: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise BuildSpecError(f"{path}: expected an object, got {type(data).__name__}")
    return data


def _optional_str(data: dict[str, Any], key: str, path: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise BuildSpecError(f"{path}.{key}: expected a string, got {type(value).__name__}")
    return value


def _required_str(data: dict[str, Any], key: str, path: str) -> str:
    value = _optional_str(data, key, path)
    if not value:
        raise BuildSpecError(f"{path}.{key}: required value")
    return value


@dataclass(frozen=True)
class BuildSource:
    url: str
    revision: Optional[str] = None
    context_dir: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"url": self.url}
        if self.revision is not None:
            result["revision"] = self.revision
        if self.context_dir is not None:
            result["contextDir"] = self.context_dir
        return result

    @classmethod
    def from_dict(cls, data: Any, path: str = "source") -> "BuildSource":
        data = _require_mapping(data, path)
        url = _required_str(data, "url", path)
        if not (_URL_PATTERN.match(url) or _SCP_PATTERN.match(url)):
            raise BuildSpecError(f"{path}.url: not a valid repository URL: {url!r}")
        return cls(
            url=url,
            revision=_optional_str(data, "revision", path),
            context_dir=_optional_str(data, "contextDir", path),
        )


@dataclass(frozen=True)
class BuildStrategyRef:
    name: str
    kind: str = DEFAULT_STRATEGY_KIND

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "name": self.name}

    @classmethod
    def from_dict(cls, data: Any, path: str = "strategy") -> "BuildStrategyRef":
        data = _require_mapping(data, path)
        kind = _optional_str(data, "kind", path) or DEFAULT_STRATEGY_KIND
        if kind not in STRATEGY_KINDS:
            raise BuildSpecError(
                f"{path}.kind: unsupported strategy kind {kind!r}, "
                f"expected one of {', '.join(STRATEGY_KINDS)}"
            )
        return cls(name=_required_str(data, "name", path), kind=kind)


@dataclass(frozen=True)
class BuildOutput:
    image: str
    credentials: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"image": self.image}
        if self.credentials is not None:
            result["credentials"] = {"name": self.credentials}
        return result

    @classmethod
    def from_dict(cls, data: Any, path: str = "output") -> "BuildOutput":
        data = _require_mapping(data, path)
        image = _required_str(data, "image", path)
        if any(ch.isspace() for ch in image):
            raise BuildSpecError(f"{path}.image: must not contain whitespace: {image!r}")
        credentials = None
        if data.get("credentials") is not None:
            creds = _require_mapping(data["credentials"], f"{path}.credentials")
            credentials = _required_str(creds, "name", f"{path}.credentials")
        return cls(image=image, credentials=credentials)


@dataclass(frozen=True)
class BuildSpec:
    """
    A build definition.

    Attributes:
        source: Where the source code comes from
        strategy: Which build strategy turns source into an image
        output: Where the image goes
        timeout: Optional build timeout
        param_values: Strategy parameters as (name, value) pairs
        document: The mapping this spec was decoded from. to_dict() hands it
            back unchanged, so fields shiprun does not model (dockerfile,
            builder, output.labels, ...) reach the build engine as written
    """
    source: BuildSource
    strategy: BuildStrategyRef
    output: BuildOutput
    timeout: Optional[timedelta] = None
    param_values: tuple[tuple[str, Any], ...] = field(default_factory=tuple)
    document: Optional[dict[str, Any]] = field(default=None, hash=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        if self.document is not None:
            return copy.deepcopy(self.document)
        result: dict[str, Any] = {
            "source": self.source.to_dict(),
            "strategy": self.strategy.to_dict(),
            "output": self.output.to_dict(),
        }
        if self.timeout is not None:
            result["timeout"] = format_duration(self.timeout)
        if self.param_values:
            result["paramValues"] = [
                {"name": name, "value": value} for name, value in self.param_values
            ]
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "BuildSpec":
        """
        Structurally decode a build definition.

        Raises:
            BuildSpecError: On any missing required field or wrong type
        """
        data = _require_mapping(data, "spec")
        if "source" not in data:
            raise BuildSpecError("spec.source: required value")
        if "strategy" not in data:
            raise BuildSpecError("spec.strategy: required value")
        if "output" not in data:
            raise BuildSpecError("spec.output: required value")

        timeout = None
        if data.get("timeout") is not None:
            try:
                timeout = parse_duration(data["timeout"])
            except DurationError as e:
                raise BuildSpecError(f"spec.timeout: {e}") from e

        params = []
        for i, item in enumerate(data.get("paramValues") or []):
            item = _require_mapping(item, f"spec.paramValues[{i}]")
            params.append((_required_str(item, "name", f"spec.paramValues[{i}]"), item.get("value")))

        return cls(
            source=BuildSource.from_dict(data["source"], "spec.source"),
            strategy=BuildStrategyRef.from_dict(data["strategy"], "spec.strategy"),
            output=BuildOutput.from_dict(data["output"], "spec.output"),
            timeout=timeout,
            param_values=tuple(params),
            document=copy.deepcopy(data),
        )

    @classmethod
    def from_payload(cls, payload: Union[str, bytes, dict[str, Any], None]) -> "BuildSpec":
        """
        Decode a serialized payload (JSON text/bytes or an already-parsed mapping).

        Raises:
            BuildSpecError: If the payload is empty, not JSON, or structurally invalid
        """
        if payload is None or payload == "" or payload == b"":
            raise BuildSpecError("spec: payload is empty")
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise BuildSpecError(f"spec: payload is not valid JSON: {e}") from e
        return cls.from_dict(payload)


@dataclass
class Build:
    """A stored Build object that Runs can reference by name."""
    metadata: ObjectMeta
    spec: BuildSpec

    KIND = BUILD_KIND
    API_VERSION = BUILD_API_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.API_VERSION,
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Build":
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=BuildSpec.from_dict(data["spec"]),
        )
