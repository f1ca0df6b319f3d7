"""Tests for correlation context manager functionality."""

import asyncio
import json
from io import StringIO

import pytest

from services.common.structured_logging import (
    configure_logging,
    correlation_context,
    get_logger,
)


def _records(output: StringIO) -> list[dict]:
    return [json.loads(line) for line in output.getvalue().splitlines() if line.strip()]


class TestCorrelationContext:
    """Test correlation context manager functionality."""

    @pytest.mark.unit
    def test_binds_correlation_id(self, isolated_structlog):
        """Logs inside the context carry the correlation ID."""
        captured_output = StringIO()
        configure_logging(level="INFO", json_logs=True, stream=captured_output)

        with correlation_context("message-1234") as logger:
            logger.info("bot.command_received")
            get_logger("aku.bot").info("bot.help_sent")

        records = _records(captured_output)
        assert [record["correlation_id"] for record in records] == [
            "message-1234",
            "message-1234",
        ]

    @pytest.mark.unit
    def test_none_binds_nothing(self, isolated_structlog):
        """A None correlation ID leaves the context untouched."""
        captured_output = StringIO()
        configure_logging(level="INFO", json_logs=True, stream=captured_output)

        with correlation_context(None) as logger:
            logger.info("test message")

        assert "correlation_id" not in _records(captured_output)[0]

    @pytest.mark.unit
    def test_cleared_after_exit(self, isolated_structlog):
        """The correlation ID is removed when the context exits."""
        captured_output = StringIO()
        configure_logging(level="INFO", json_logs=True, stream=captured_output)

        with correlation_context("voice-1-2") as logger:
            logger.info("inside")
        get_logger("aku.test").info("outside")

        inside, outside = _records(captured_output)
        assert inside["correlation_id"] == "voice-1-2"
        assert "correlation_id" not in outside

    @pytest.mark.unit
    def test_cleared_after_exception(self, isolated_structlog):
        """The correlation ID is removed even when the body raises."""
        captured_output = StringIO()
        configure_logging(level="INFO", json_logs=True, stream=captured_output)

        with pytest.raises(ValueError), correlation_context("reaction-99") as logger:
            logger.info("inside")
            raise ValueError("boom")
        get_logger("aku.test").info("outside")

        inside, outside = _records(captured_output)
        assert inside["correlation_id"] == "reaction-99"
        assert "correlation_id" not in outside

    @pytest.mark.unit
    def test_nested_contexts_restore_outer(self, isolated_structlog):
        """Leaving an inner context restores the outer correlation ID."""
        captured_output = StringIO()
        configure_logging(level="INFO", json_logs=True, stream=captured_output)

        with correlation_context("outer") as outer_logger:
            outer_logger.info("outer")
            with correlation_context("inner") as inner_logger:
                inner_logger.info("inner")
            outer_logger.info("outer again")

        assert [record["correlation_id"] for record in _records(captured_output)] == [
            "outer",
            "inner",
            "outer",
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tasks_keep_their_own_ids(self, isolated_structlog):
        """Interleaved event handlers each log with their own correlation ID."""
        captured_output = StringIO()
        configure_logging(level="INFO", json_logs=True, stream=captured_output)

        async def handler(correlation_id: str) -> None:
            with correlation_context(correlation_id) as logger:
                logger.info("handler.start", handler=correlation_id)
                await asyncio.sleep(0.01)
                logger.info("handler.end", handler=correlation_id)

        await asyncio.gather(
            asyncio.create_task(handler("message-1")),
            asyncio.create_task(handler("message-2")),
        )

        records = _records(captured_output)
        assert len(records) == 4
        for record in records:
            assert record["correlation_id"] == record["handler"]
