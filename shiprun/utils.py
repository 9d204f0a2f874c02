"""
Utility functions for shiprun.

Includes logging setup and the capped exponential backoff used for requeues.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from rich.console import Console
from rich.logging import RichHandler

from shiprun.errors import TransientError


# Global console for pretty output
console = Console(stderr=True)


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "structured",
    log_file: Optional[Path] = None,
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for the controller.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (rich console)
        log_file: Optional path to a log file (always structured)
        console_output: Also log to the console

    Returns:
        Configured "shiprun" logger
    """
    logger = logging.getLogger("shiprun")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers
    logger.propagate = False

    if log_file is not None:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler: logging.Handler = RichHandler(
                console=console, rich_tracebacks=True, show_path=False
            )
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(StructuredFormatter())
        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "key"):
            log_data["key"] = record.key
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def backoff_delay(failures: int, base_seconds: float, max_seconds: float) -> float:
    """
    Capped exponential backoff.

    Args:
        failures: Number of consecutive failures so far (0 for the first retry)
        base_seconds: Delay for the first retry
        max_seconds: Upper bound on the delay

    Returns:
        base_seconds * 2**failures, capped at max_seconds
    """
    if failures < 0:
        failures = 0
    # Avoid float overflow for long failure streaks
    if failures > 64:
        return max_seconds
    return min(base_seconds * (2 ** failures), max_seconds)


def retry_with_backoff(
    func: Callable[[], Any],
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    max_backoff_seconds: float = 60.0,
    logger: Optional[logging.Logger] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Retry a function on TransientError with capped exponential backoff.

    PermanentError and any other exception propagate immediately.

    Args:
        func: Function to retry
        max_attempts: Maximum number of attempts
        backoff_seconds: Initial backoff time in seconds
        max_backoff_seconds: Backoff cap in seconds
        logger: Logger for retry messages
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of successful function call

    Raises:
        TransientError: If all attempts failed transiently
    """
    attempt = 1
    while True:
        try:
            return func()
        except TransientError as e:
            if attempt >= max_attempts:
                if logger:
                    logger.error(f"All {max_attempts} attempts failed: {e}")
                raise

            wait_time = backoff_delay(attempt - 1, backoff_seconds, max_backoff_seconds)
            if logger:
                logger.warning(
                    f"Attempt {attempt} failed: {e}. Retrying in {wait_time}s..."
                )
            sleep(wait_time)
            attempt += 1
