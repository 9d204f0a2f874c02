"""
Configuration management for the shiprun controller.

Loads and validates $SHIPRUN_HOME/config.yaml (default ~/.config/shiprun).
An optional env_file entry is loaded into the process environment with
python-dotenv before the controller starts.
"""

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv


class ConfigError(Exception):
    """Configuration validation error."""
    pass


LOG_FORMATS = ("structured", "pretty")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def get_shiprun_home() -> Path:
    """Return the shiprun home directory ($SHIPRUN_HOME or ~/.config/shiprun)."""
    home = os.environ.get("SHIPRUN_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/shiprun").expanduser()


@dataclass
class ShiprunConfig:
    """
    Controller settings.

    Attributes:
        store_path: Root directory of the FileObjectStore
        workers: Size of the reconcile worker pool
        poll_interval_seconds: Re-check interval for non-terminal Runs
        attempt_deadline_seconds: Overall deadline for one reconcile attempt
        backoff_base_seconds: First requeue delay after a transient failure
        backoff_max_seconds: Cap on the requeue delay
        dependency_grace_period_seconds: How long a missing Build is tolerated
        log_level: Logging level name
        log_format: "structured" (JSON) or "pretty" (rich console)
        log_file: Optional log file path
        env_file: Optional dotenv file loaded at startup
    """
    store_path: str = "~/.local/share/shiprun/store"
    workers: int = 4
    poll_interval_seconds: float = 10.0
    attempt_deadline_seconds: float = 30.0
    backoff_base_seconds: float = 0.005
    backoff_max_seconds: float = 300.0
    dependency_grace_period_seconds: float = 60.0
    log_level: str = "INFO"
    log_format: str = "structured"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigError: If any value is out of range
        """
        if self.workers < 1:
            raise ConfigError(f"workers must be >= 1, got {self.workers}")
        for name in (
            "poll_interval_seconds",
            "attempt_deadline_seconds",
            "backoff_base_seconds",
            "backoff_max_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.dependency_grace_period_seconds < 0:
            raise ConfigError(
                "dependency_grace_period_seconds must be >= 0, "
                f"got {self.dependency_grace_period_seconds}"
            )
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ConfigError("backoff_max_seconds must be >= backoff_base_seconds")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"Unknown log_level: {self.log_level}")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(
                f"Unknown log_format: {self.log_format} (expected one of {', '.join(LOG_FORMATS)})"
            )

    @property
    def store_dir(self) -> Path:
        return Path(self.store_path).expanduser()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShiprunConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        try:
            config = cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid config: {e}") from e
        config.validate()
        return config


def load_config(config_path: Optional[Path] = None) -> ShiprunConfig:
    """
    Load shiprun configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to $SHIPRUN_HOME/config.yaml

    Returns:
        Validated ShiprunConfig

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_shiprun_home() / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"shiprun config.yaml not found at {config_path}. Run 'shiprun init' to create one."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

    config = ShiprunConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    return config
