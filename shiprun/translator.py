"""
Translate an accepted Run into the BuildRun that executes it.

translate() is total for Runs that validate() accepted (anything else raises
ValidationError) and deterministic: the same Run spec always produces a
byte-identical BuildRun spec. Identity is
derived from the Run (same namespace, same name), and the BuildRun is owned by
the Run through a controller owner reference.
"""

from shiprun.schemas import (
    BuildOverrides,
    BuildReference,
    BuildRun,
    BuildRunSpec,
    InlineBuild,
    NamedBuild,
    ObjectMeta,
    OwnerReference,
    Run,
    parse_duration,
)
from shiprun.validation import (
    PARAM_OUTPUT_IMAGE,
    PARAM_SOURCE_REVISION,
    PARAM_SOURCE_URL,
    validate,
)


LABEL_RUN_NAME = "shiprun.io/run-name"
LABEL_BUILD_NAME = "build.shipwright.io/name"

# param name -> BuildOverrides field
PARAM_OVERRIDES = {
    PARAM_SOURCE_URL: "source_url",
    PARAM_SOURCE_REVISION: "source_revision",
    PARAM_OUTPUT_IMAGE: "output_image",
}


def buildrun_name(run: Run) -> str:
    """The deterministic BuildRun name for a Run."""
    return run.metadata.name


def owner_reference(run: Run) -> OwnerReference:
    return OwnerReference(
        api_version=run.API_VERSION,
        kind=run.KIND,
        name=run.metadata.name,
        uid=run.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def translate_spec(run: Run) -> BuildRunSpec:
    """
    Build the BuildRun spec for an accepted Run.

    Raises:
        ValidationError: If the Run is outside the accepted grammar
    """
    result = validate(run)
    if not result.accepted:
        raise result.to_error()
    target = result.target
    if isinstance(target, BuildReference):
        build = NamedBuild(name=target.name)
    else:
        build = InlineBuild(spec=target.spec)

    overrides = {
        field_name: run.spec.param(param_name).value
        for param_name, field_name in PARAM_OVERRIDES.items()
        if run.spec.param(param_name) is not None
    }

    timeout = parse_duration(run.spec.timeout) if run.spec.timeout is not None else None

    return BuildRunSpec(
        build=build,
        overrides=BuildOverrides(**overrides),
        timeout=timeout,
    )


def translate(run: Run) -> BuildRun:
    """
    Produce the BuildRun descriptor for an accepted Run.

    Args:
        run: A Run that validate() accepted

    Returns:
        An unsaved BuildRun (no uid/resourceVersion) owned by the Run

    Raises:
        ValidationError: If the Run is outside the accepted grammar
    """
    spec = translate_spec(run)
    labels = {LABEL_RUN_NAME: run.metadata.name}
    if isinstance(spec.build, NamedBuild):
        labels[LABEL_BUILD_NAME] = spec.build.name

    metadata = ObjectMeta(
        name=buildrun_name(run),
        namespace=run.metadata.namespace,
        owner_references=[owner_reference(run)],
        labels=labels,
    )
    return BuildRun(metadata=metadata, spec=spec)
