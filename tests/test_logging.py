"""Tests for the structured logging system (workflow_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "workflow_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("workflow_transition", extra={"seq": 3, "to_state": "approved"})

        record = _parse_log(stream)
        assert record["seq"] == 3
        assert record["to_state"] == "approved"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(instance_id="inst-1", workflow_kind="contract")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["instance_id"] == "inst-1"
        assert record["workflow_kind"] == "contract"

    def test_workflow_exception_attributes_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from workflow_kernel.exceptions import InvalidStateError

        try:
            raise InvalidStateError("contract", "approved", "cancel")
        except InvalidStateError:
            get_logger("test").error("rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_STATE"
        assert record["exc_type"] == "InvalidStateError"
        assert record["exc_current_state"] == "approved"
        assert record["exc_action"] == "cancel"
        assert "traceback" in record

    def test_uuid_and_decimal_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_values", extra={"record_id": uid, "amount": Decimal("1.50")})

        record = _parse_log(stream)
        assert record["record_id"] == str(uid)
        assert record["amount"] == "1.50"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "instance_id" not in record
        assert "actor_id" not in record

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "y"}

    def test_unknown_and_none_fields_ignored(self):
        LogContext.set(colour="red", action=None)
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(action="outer")
        with LogContext.bind(action="inner"):
            assert LogContext.get_all()["action"] == "inner"
        assert LogContext.get_all()["action"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(instance_id="temp"):
            assert LogContext.get_all()["instance_id"] == "temp"
        assert "instance_id" not in LogContext.get_all()


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        installed = [
            h
            for h in logging.getLogger("workflow_kernel").handlers
            if isinstance(h.formatter, StructuredFormatter)
        ]
        assert installed == [h1]

    def test_get_logger_returns_child(self):
        assert get_logger("services.engine").name == "workflow_kernel.services.engine"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "workflow_kernel.deep.nested.module"
