"""
Tests for utility helpers: ID generation, retry with backoff and logging.
"""

import logging
import sys

import pytest
from loguru import logger

from autoorganize.config import LoggingConfig
from autoorganize.utils import (
    ExtractionFailure,
    StorageFailure,
    generate_document_id,
    generate_event_id,
    generate_job_id,
    generate_relationship_id,
    get_logger,
    retry_async,
    setup_logging,
)


class TestIdGenerator:
    """Test ID generation."""

    @pytest.mark.parametrize(
        "generator,prefix",
        [
            (generate_document_id, "doc_"),
            (generate_relationship_id, "rel_"),
            (generate_job_id, "job_"),
            (generate_event_id, "evt_"),
        ],
    )
    def test_prefix_and_length(self, generator, prefix):
        value = generator()
        assert value.startswith(prefix)
        assert len(value) == len(prefix) + 12

    def test_unique(self):
        ids = {generate_document_id() for _ in range(500)}
        assert len(ids) == 500


class TestRetryAsync:
    """Test retry_async."""

    async def test_success_first_attempt(self):
        attempts: list[int] = []

        async def operation():
            return "ok"

        result = await retry_async(operation, "op", attempts_out=attempts)

        assert result == "ok"
        assert attempts == [1]

    async def test_retries_retryable_error(self):
        calls = {"n": 0}
        attempts: list[int] = []

        async def operation():
            calls["n"] += 1
            if calls["n"] < 3:
                raise StorageFailure("disk busy")
            return calls["n"]

        result = await retry_async(
            operation, "op", max_attempts=3, base_delay=0.001, attempts_out=attempts
        )

        assert result == 3
        assert attempts == [3]

    async def test_gives_up_after_max_attempts(self):
        calls = {"n": 0}

        async def operation():
            calls["n"] += 1
            raise StorageFailure("disk full")

        with pytest.raises(StorageFailure):
            await retry_async(operation, "op", max_attempts=2, base_delay=0.001)

        assert calls["n"] == 2

    async def test_non_retryable_propagates_immediately(self):
        calls = {"n": 0}
        attempts: list[int] = []

        async def operation():
            calls["n"] += 1
            raise ExtractionFailure("bad input")

        with pytest.raises(ExtractionFailure):
            await retry_async(operation, "op", base_delay=0.001, attempts_out=attempts)

        assert calls["n"] == 1
        assert attempts == [1]


class TestLogging:
    """Logger setup."""

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        yield
        logger.remove()
        logger.add(sys.stderr)

    def test_file_sinks_created(self, tmp_path):
        setup_logging(LoggingConfig(log_dir=str(tmp_path / "logs"), serialize=False))

        get_logger("tests").error("stage failed")
        logger.complete()

        files = sorted(p.name for p in (tmp_path / "logs").iterdir())
        assert len(files) == 2
        assert "autoorganize_errors.log" in files
        assert "stage failed" in (tmp_path / "logs" / "autoorganize_errors.log").read_text()

    def test_stdlib_records_forwarded(self):
        setup_logging(LoggingConfig(log_to_file=False))
        messages: list[str] = []
        logger.add(lambda message: messages.append(message.record["extra"]["module"]))

        logging.getLogger("watchdog").warning("observer hiccup")

        assert messages == ["watchdog"]
