"""
Run grammar validation.

validate() decides whether a Run is expressible as a BuildRun. It is pure and
deterministic: the same spec always yields the same result, and it performs
no I/O (whether a referenced Build exists is checked later by the reconciler).

Rules (every violation is collected, none short-circuits the others):
1. Exactly one of spec.ref / spec.spec
2. spec.ref must point at kind Build, apiVersion shipwright.io/v1alpha1, with a name
3. spec.spec must declare the same kind/apiVersion and carry a decodable BuildSpec
4. spec.retries must be 0
5. Every param name must be in the allow-list, with a string value
6. spec.timeout, if set, must be a non-negative duration

Messages follow the "<detail>: <field path>" shape so a pipeline author can
see every mistake at once in the Run's condition message.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Union

from shiprun.errors import ValidationError
from shiprun.schemas import (
    BUILD_API_VERSION,
    BUILD_KIND,
    BuildSpec,
    BuildSpecError,
    BuildTarget,
    DurationError,
    Run,
    RunSpec,
    parse_duration,
)


PARAM_SOURCE_URL = "shp-source-url"
PARAM_SOURCE_REVISION = "shp-source-revision"
PARAM_OUTPUT_IMAGE = "shp-output-image"

SUPPORTED_PARAMS = (PARAM_SOURCE_URL, PARAM_SOURCE_REVISION, PARAM_OUTPUT_IMAGE)

KIND_API_VERSION_MESSAGE = (
    f"invalid value: kind must be {BUILD_KIND}, apiVersion must be {BUILD_API_VERSION}"
)


@dataclass(frozen=True)
class Accepted:
    """The Run is admissible; `target` is the resolved build target."""
    target: BuildTarget

    accepted = True


@dataclass(frozen=True)
class Rejected:
    """The Run is outside the accepted grammar."""
    errors: tuple[str, ...] = field(default_factory=tuple)

    accepted = False

    @property
    def reason(self) -> str:
        """All violations joined into one human-readable message."""
        return "; ".join(self.errors)

    def to_error(self) -> ValidationError:
        return ValidationError(list(self.errors))


ValidationResult = Union[Accepted, Rejected]


def _supported_values() -> str:
    return ", ".join(f'"{name}"' for name in SUPPORTED_PARAMS)


def _check_target(spec: RunSpec) -> list[str]:
    errors: list[str] = []

    if spec.ref is not None and spec.embedded is not None:
        return ["expected exactly one of ref/spec, got both: spec.ref, spec.spec"]
    if spec.ref is None and spec.embedded is None:
        return ["expected exactly one of ref/spec, got neither: spec.ref, spec.spec"]

    if spec.ref is not None:
        ref = spec.ref
        if ref.kind != BUILD_KIND or ref.api_version != BUILD_API_VERSION:
            errors.append(f"{KIND_API_VERSION_MESSAGE}: spec.ref")
        if not ref.name:
            errors.append("build name is required: spec.ref.name")
        return errors

    embedded = spec.embedded
    if embedded.kind != BUILD_KIND or embedded.api_version != BUILD_API_VERSION:
        errors.append(f"{KIND_API_VERSION_MESSAGE}: spec.spec")
        return errors
    try:
        BuildSpec.from_payload(embedded.payload)
    except BuildSpecError as e:
        errors.append(f"invalid embedded build spec: {e}: spec.spec.spec")
    return errors


def _check_retries(spec: RunSpec) -> list[str]:
    retries = spec.retries
    if retries is None or retries == 0:
        return []
    if isinstance(retries, bool) or not isinstance(retries, int):
        return [f"retries are not supported: retries must be an integer, got {retries!r}: spec.retries"]
    return ["retries are not supported: spec.retries"]


def _check_params(spec: RunSpec) -> list[str]:
    errors: list[str] = []
    for i, param in enumerate(spec.params):
        path = f"spec.params[{i}]"
        if param.name not in SUPPORTED_PARAMS:
            errors.append(
                f'{path}.name: Unsupported value: "{param.name}": '
                f"supported values: {_supported_values()}"
            )
        elif not param.is_string:
            errors.append(
                f"invalid value: param {param.name} must be a string, got an array: {path}.value"
            )
    return errors


def _check_timeout(spec: RunSpec) -> list[str]:
    if spec.timeout is None:
        return []
    try:
        timeout = parse_duration(spec.timeout)
    except DurationError:
        return [f"invalid value: {spec.timeout!r} is not a valid duration: spec.timeout"]
    if timeout < timedelta(0):
        return ["invalid value: timeout must be a non-negative duration: spec.timeout"]
    return []


def validation_errors(spec: RunSpec) -> list[str]:
    """Return every grammar violation in rule order (empty if valid)."""
    errors: list[str] = []
    errors.extend(_check_target(spec))
    errors.extend(_check_retries(spec))
    errors.extend(_check_params(spec))
    errors.extend(_check_timeout(spec))
    return errors


def validate(run: Run) -> ValidationResult:
    """
    Decide whether a Run is admissible.

    Args:
        run: The Run to check

    Returns:
        Accepted with the resolved build target, or Rejected with every
        violation found
    """
    errors = validation_errors(run.spec)
    if errors:
        return Rejected(errors=tuple(errors))
    return Accepted(target=run.spec.target)
