"""Tests for logging setup and backoff helpers."""

import json
import logging
import sys

import pytest
from rich.logging import RichHandler
from shiprun.errors import ConflictError, PermanentError, TransientError
from shiprun.utils import (
    StructuredFormatter,
    backoff_delay,
    retry_with_backoff,
    setup_logging,
)


class TestBackoffDelay:

    @pytest.mark.parametrize("failures,expected", [
        (0, 0.005),
        (1, 0.01),
        (2, 0.02),
        (10, 5.12),
    ])
    def test_doubles(self, failures, expected):
        assert backoff_delay(failures, 0.005, 300) == pytest.approx(expected)

    def test_capped(self):
        assert backoff_delay(20, 0.005, 300) == 300
        assert backoff_delay(10_000, 0.005, 300) == 300

    def test_negative_failures(self):
        assert backoff_delay(-3, 1.0, 60) == 1.0


class TestRetryWithBackoff:

    def test_retries_transient_until_success(self):
        attempts = []
        sleeps = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConflictError("stale")
            return "ok"

        assert retry_with_backoff(flaky, max_attempts=3, backoff_seconds=1.0, sleep=sleeps.append) == "ok"
        assert sleeps == [1.0, 2.0]

    def test_gives_up(self):
        sleeps = []

        def always_fails():
            raise TransientError("store unavailable")

        with pytest.raises(TransientError):
            retry_with_backoff(always_fails, max_attempts=2, sleep=sleeps.append)
        assert len(sleeps) == 1

    def test_permanent_not_retried(self):
        sleeps = []

        def invalid():
            raise PermanentError("never")

        with pytest.raises(PermanentError):
            retry_with_backoff(invalid, sleep=sleeps.append)
        assert sleeps == []

    def test_logs_retries(self, caplog):
        logger = logging.getLogger("shiprun.test")
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise TransientError("blip")
            return True

        with caplog.at_level(logging.WARNING, logger="shiprun.test"):
            retry_with_backoff(flaky, logger=logger, sleep=lambda _: None)
        assert "Attempt 1 failed: blip" in caplog.text


class TestStructuredFormatter:

    def _record(self, **extra):
        record = logging.LogRecord(
            "shiprun.reconciler", logging.INFO, __file__, 1, "created %s", ("x",), None,
        )
        for name, value in extra.items():
            setattr(record, name, value)
        return record

    def test_base_fields(self):
        data = json.loads(StructuredFormatter().format(self._record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "shiprun.reconciler"
        assert data["message"] == "created x"
        assert data["timestamp"].endswith("Z")
        assert "key" not in data

    def test_extra_fields(self):
        record = self._record(key="build-pipeline/image-build", event="buildrun_created",
                              metadata={"attempt": 1})
        data = json.loads(StructuredFormatter().format(record))
        assert data["key"] == "build-pipeline/image-build"
        assert data["event"] == "buildrun_created"
        assert data["metadata"] == {"attempt": 1}

    def test_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "shiprun", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )
        data = json.loads(StructuredFormatter().format(record))
        assert "ValueError: bad" in data["exception"]


class TestSetupLogging:

    def test_structured(self):
        logger = setup_logging("DEBUG", "structured")
        assert logger.name == "shiprun"
        assert logger.level == logging.DEBUG
        assert not logger.propagate
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, StructuredFormatter)

    def test_pretty(self):
        logger = setup_logging("INFO", "pretty")
        assert isinstance(logger.handlers[0], RichHandler)

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "shiprun.log"
        logger = setup_logging("INFO", "structured", log_file=log_file, console_output=False)
        logging.getLogger("shiprun.controller").info(
            "requeue", extra={"key": "ns/run", "event": "requeue"},
        )
        for handler in logger.handlers:
            handler.flush()
            handler.close()

        line = json.loads(log_file.read_text().splitlines()[0])
        assert line["key"] == "ns/run"
        assert line["event"] == "requeue"

    def test_repeated_setup_replaces_handlers(self):
        setup_logging("INFO", "structured")
        logger = setup_logging("INFO", "structured")
        assert len(logger.handlers) == 1
