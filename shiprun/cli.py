"""
CLI interface for the shiprun controller.

Provides commands to check and preview Runs, load objects into the local
store, and run the reconcile loop against it.

Objects are read from YAML or JSON files (one or more documents per file) in
the same wire shape the orchestrator and build engine use.
"""

import logging
import signal
import sys
import threading
from pathlib import Path

import click

from shiprun import __version__

logger = logging.getLogger(__name__)


def _load_documents(path: Path) -> list[dict]:
    """Read every YAML/JSON document in a file, skipping empty ones."""
    import yaml

    try:
        with open(path) as f:
            docs = [doc for doc in yaml.safe_load_all(f) if doc is not None]
    except yaml.YAMLError as e:
        click.echo(f"✗ {path}: invalid YAML: {e}", err=True)
        raise SystemExit(1)

    for doc in docs:
        if not isinstance(doc, dict):
            click.echo(f"✗ {path}: expected an object document, got {type(doc).__name__}", err=True)
            raise SystemExit(1)
    return docs


def _load_run(path: Path):
    """Decode the single Run document in a file."""
    from shiprun.schemas import Run

    docs = _load_documents(path)
    runs = [doc for doc in docs if doc.get("kind") == Run.KIND]
    if len(runs) != 1:
        click.echo(f"✗ {path}: expected exactly one Run document, found {len(runs)}", err=True)
        raise SystemExit(1)
    try:
        return Run.from_dict(runs[0])
    except (KeyError, TypeError, ValueError) as e:
        click.echo(f"✗ {path}: malformed Run: {e}", err=True)
        raise SystemExit(1)


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'shiprun init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _open_store(config):
    from shiprun.errors import TransientError
    from shiprun.store import FileObjectStore

    try:
        return FileObjectStore(config.store_dir)
    except TransientError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="shiprun")
@click.pass_context
def main(ctx):
    """
    shiprun - run pipeline steps as image builds.

    Delegates Runs that reference a Build to BuildRuns and mirrors their
    status back.
    """
    from shiprun.config import ConfigError, load_config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except (FileNotFoundError, ConfigError) as e:
        # validate/translate/init work without a config
        ctx.obj["config_error"] = str(e)


@main.command("validate")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate_cmd(file: Path):
    """Check a Run against the accepted grammar."""
    from shiprun.validation import validate

    run = _load_run(file)
    result = validate(run)
    if not result.accepted:
        click.echo(f"✗ {run.metadata.key} rejected: {result.reason}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ {run.metadata.key} accepted")


@main.command("translate")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def translate_cmd(file: Path):
    """Print the BuildRun an accepted Run would create."""
    import yaml

    from shiprun.errors import ValidationError
    from shiprun.translator import translate

    run = _load_run(file)
    try:
        buildrun = translate(run)
    except ValidationError as e:
        click.echo(f"✗ {run.metadata.key} rejected: {e}", err=True)
        raise SystemExit(1)
    click.echo(yaml.safe_dump(buildrun.to_dict(), sort_keys=False), nl=False)


def _apply_object(store, obj) -> str:
    """Create `obj`, or update the stored copy from a fresh read."""
    meta = obj.metadata
    existing = store.get(obj.KIND, meta.namespace, meta.name)
    if existing is None:
        store.create(obj)
        return "created"
    meta.resource_version = existing.metadata.resource_version
    meta.finalizers = existing.metadata.finalizers
    meta.owner_references = existing.metadata.owner_references
    store.update(obj)
    return "configured"


@main.command("apply")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def apply_cmd(ctx, file: Path):
    """Create or update Runs and Builds in the local store."""
    from shiprun.errors import ShiprunError
    from shiprun.store import KINDS
    from shiprun.utils import retry_with_backoff

    config = _require_config(ctx)
    store = _open_store(config)

    for doc in _load_documents(file):
        kind = doc.get("kind")
        if kind not in KINDS:
            click.echo(f"✗ unsupported kind: {kind}", err=True)
            raise SystemExit(1)
        try:
            obj = KINDS[kind].from_dict(doc)
        except (KeyError, TypeError, ValueError) as e:
            click.echo(f"✗ malformed {kind}: {e}", err=True)
            raise SystemExit(1)

        # a running controller may write the object between our read and write
        try:
            action = retry_with_backoff(
                lambda: _apply_object(store, obj),
                max_attempts=5,
                backoff_seconds=config.backoff_base_seconds,
                max_backoff_seconds=config.backoff_max_seconds,
                logger=logger,
            )
        except ShiprunError as e:
            click.echo(f"✗ {kind} {obj.metadata.key} failed: {e}", err=True)
            raise SystemExit(1)
        click.echo(f"✓ {kind} {obj.metadata.key} {action}")


@main.command("status")
@click.argument("key")
@click.pass_context
def status_cmd(ctx, key: str):
    """Show the status of a Run (KEY is namespace/name)."""
    import yaml

    from shiprun.reconciler import split_key
    from shiprun.schemas import Run

    config = _require_config(ctx)
    store = _open_store(config)

    try:
        namespace, name = split_key(key)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="KEY")

    run = store.get(Run.KIND, namespace, name)
    if run is None:
        click.echo(f"✗ Run {key} not found", err=True)
        raise SystemExit(1)

    condition = run.succeeded_condition
    if condition is None:
        click.echo(f"Run {key}: Pending")
    else:
        click.echo(f"Run {key}: {condition.status.value} ({condition.reason})")
        if condition.message:
            click.echo(f"  {condition.message}")
    if run.status.results:
        click.echo()
        click.echo(yaml.safe_dump({"results": run.status.results}, sort_keys=True), nl=False)


@main.command("controller")
@click.option("--once", is_flag=True, help="Reconcile every stored Run once and exit")
@click.pass_context
def controller_cmd(ctx, once: bool):
    """Run the reconcile loop against the local store."""
    from shiprun.controller import Controller
    from shiprun.reconciler import Reconciler, ReconcilerContext
    from shiprun.utils import setup_logging

    config = _require_config(ctx)
    setup_logging(config.log_level, config.log_format, config.log_file)
    store = _open_store(config)

    reconciler = Reconciler(ReconcilerContext(store=store, config=config))
    controller = Controller(reconciler, store, workers=config.workers)

    if once:
        controller.start()
        processed = controller.run_until_idle()
        controller.stop()
        click.echo(f"✓ reconciled {processed} key(s)")
        return

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    click.echo(f"shiprun controller watching {config.store_dir} (Ctrl+C to stop)", err=True)
    controller.run(stop_event)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize shiprun configuration."""
    from shiprun.config import ShiprunConfig, get_shiprun_home
    import yaml

    home = get_shiprun_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = ShiprunConfig(env_file=str(home / ".env")).to_dict()
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# REGISTRY_USER=...\n# REGISTRY_TOKEN=...\n")

    click.echo(f"Initialized shiprun config at {cfg_path}")


if __name__ == "__main__":
    sys.exit(main())
