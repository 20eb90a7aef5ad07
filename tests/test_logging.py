# ============================================================================
# LOGGING TESTS
# ============================================================================
# STATUS: Tests - Structured logging
# PURPOSE: Verify formatters and context propagation
# CREATED: 19 OCT 2026
# ============================================================================
"""
Logging Tests

Run with:
    pytest tests/test_logging.py -v
"""

import asyncio
import json
import logging

from core.logging import (
    HumanFormatter,
    StructuredFormatter,
    get_current_context,
    log_context,
)


def make_record(message: str) -> logging.LogRecord:
    return logging.LogRecord("orchestrator.locker", logging.INFO, __file__, 1, message, None, None)


class TestLogContext:
    """log_context() nesting and task propagation."""

    def test_nested_context(self):
        with log_context(namespace="default", lease="backup"):
            with log_context(identity="host-1"):
                context = get_current_context()
                assert (context.namespace, context.lease, context.identity) == ("default", "backup", "host-1")
            assert get_current_context().identity is None
        assert get_current_context().namespace is None

    def test_context_visible_in_tasks(self):
        async def scenario():
            async def child():
                return get_current_context().lease

            with log_context(lease="backup"):
                return await asyncio.create_task(child())

        assert asyncio.run(scenario()) == "backup"


class TestFormatters:
    """Human and JSON output."""

    def test_human_format(self):
        with log_context(namespace="default", lease="backup", identity="host-1"):
            line = HumanFormatter().format(make_record("Became leader"))
        assert line.startswith("[leaselock] ")
        assert "[namespace=default, lease=backup, id=host-1]" in line
        assert line.endswith("Became leader")

    def test_json_format(self):
        with log_context(lease="backup", component="locker"):
            data = json.loads(StructuredFormatter().format(make_record("Became leader")))
        assert data["message"] == "Became leader"
        assert data["level"] == "INFO"
        assert data["context"] == {"lease": "backup", "component": "locker"}


class TestContextLogger:
    """get_logger() adapter."""

    def test_extra_fields_attached(self):
        from core.logging import get_logger

        records = []

        class Collect(logging.Handler):
            def emit(self, record):
                records.append(record)

        logger = get_logger("tests.context_logger")
        handler = Collect()
        logger.logger.addHandler(handler)
        logger.logger.setLevel(logging.INFO)
        try:
            logger.info("Deleted lease", extra={"uid": "uid-1"})
            logger.info("No extra")
        finally:
            logger.logger.removeHandler(handler)

        assert records[0].extra == {"uid": "uid-1"}
        assert not hasattr(records[1], "extra")
