"""Structured JSON logging: record shape, context propagation, setup."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from procurement_kernel.exceptions import EntityNotFound, GuardViolation
from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from procurement_modules.orders.models import OrderStatus


@pytest.fixture(autouse=True)
def _isolated_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


class Captured:
    """JSON lines written by the procurement_kernel handler."""

    def __init__(self, stream: StringIO):
        self._stream = stream

    @property
    def records(self) -> list[dict]:
        return [json.loads(line) for line in self._stream.getvalue().splitlines() if line]

    @property
    def last(self) -> dict:
        return self.records[-1]


@pytest.fixture
def captured():
    stream = StringIO()
    configure_logging(stream=stream)
    return Captured(stream)


class TestRecordShape:
    def test_base_fields(self, captured):
        get_logger("services.orders").info("order_submitted")

        record = captured.last
        assert record["message"] == "order_submitted"
        assert record["level"] == "INFO"
        assert record["logger"] == "procurement_kernel.services.orders"
        assert record["ts"].endswith("+00:00")

    def test_extra_becomes_top_level(self, captured):
        get_logger("x").info("order_approved", extra={"version": 2, "to_state": "approved"})
        assert captured.last["version"] == 2
        assert captured.last["to_state"] == "approved"

    def test_decimal_enum_uuid_are_text(self, captured):
        request = uuid4()
        get_logger("x").info(
            "stock_issued",
            extra={"request": request, "quantity": Decimal("2.50"), "status": OrderStatus.APPROVED},
        )
        record = captured.last
        assert record["request"] == str(request)
        assert record["quantity"] == "2.50"
        assert record["status"] == "approved"

    def test_debug_is_filtered_at_info(self, captured):
        logger = get_logger("x")
        logger.debug("noise")
        logger.warning("kept")
        assert [r["message"] for r in captured.records] == ["kept"]

    def test_plain_exception(self, captured):
        try:
            raise ValueError("bad quantity")
        except ValueError:
            get_logger("x").exception("parse_failed")

        record = captured.last
        assert record["level"] == "ERROR"
        assert (record["exc_type"], record["exc_message"]) == ("ValueError", "bad quantity")
        assert "Traceback" in record["traceback"]

    def test_kernel_error_attributes_are_flattened(self, captured):
        try:
            raise EntityNotFound("purchases", "PUR-2025-004")
        except EntityNotFound:
            get_logger("x").error("lookup_failed", exc_info=True)

        record = captured.last
        assert record["exc_code"] == "ENTITY_NOT_FOUND"
        assert record["exc_collection"] == "purchases"
        assert record["exc_entity_id"] == "PUR-2025-004"

    def test_guard_violation_carries_guard_and_state(self, captured):
        try:
            raise GuardViolation("approve_order", "valid_source_state", "order is rejected", current_state="rejected")
        except GuardViolation:
            get_logger("x").warning("refused", exc_info=True)

        record = captured.last
        assert record["exc_guard"] == "valid_source_state"
        assert record["exc_current_state"] == "rejected"


class TestLogContext:
    def test_fields_appear_on_records(self, captured):
        LogContext.set(correlation_id="req-7", transition="deliver_purchase")
        get_logger("x").info("bon_created")
        assert captured.last["correlation_id"] == "req-7"
        assert captured.last["transition"] == "deliver_purchase"

    def test_no_fields_when_nothing_bound(self, captured):
        get_logger("x").info("idle")
        assert not set(captured.last) & {"correlation_id", "actor_id", "entity_id"}

    def test_extra_does_not_override_context(self, captured):
        with LogContext.bind(entity_id="PO-2025-001"):
            get_logger("x").info("clash", extra={"entity_id": "other"})
        assert captured.last["entity_id"] == "PO-2025-001"

    def test_set_ignores_none_and_accumulates(self):
        LogContext.set(actor_id="head-1")
        LogContext.set(correlation_id="c", actor_id=None)
        assert LogContext.get_all() == {"actor_id": "head-1", "correlation_id": "c"}

    def test_bind_nests_and_restores(self):
        with LogContext.bind(transition="submit_order", actor_id="vendor-1"):
            with LogContext.bind(transition="notify"):
                assert LogContext.get_all()["transition"] == "notify"
                assert LogContext.get_all()["actor_id"] == "vendor-1"
            assert LogContext.get_all()["transition"] == "submit_order"
        assert LogContext.get_all() == {}

    def test_bind_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(idempotency_key="k-1"):
                raise RuntimeError("boom")
        assert "idempotency_key" not in LogContext.get_all()

    def test_unknown_field_rejected_before_entry(self):
        with pytest.raises(TypeError, match="tenant_id"):
            LogContext.bind(tenant_id="x")
        with pytest.raises(TypeError):
            LogContext.set(tenant="x")


class TestConfigureLogging:
    def test_only_first_call_attaches_a_handler(self):
        first, second = StringIO(), StringIO()
        configure_logging(stream=first)
        configure_logging(stream=second)

        get_logger("x").info("once")
        assert logging.getLogger("procurement_kernel").handlers[0].stream is first
        assert len(logging.getLogger("procurement_kernel").handlers) == 1
        assert second.getvalue() == ""

    def test_explicit_handler_gets_json_formatter(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        configure_logging(handler=handler, level=logging.DEBUG)

        get_logger("deep.nested").debug("reached")
        assert isinstance(handler.formatter, StructuredFormatter)
        assert json.loads(stream.getvalue())["logger"] == "procurement_kernel.deep.nested"

    def test_records_do_not_reach_the_root_logger(self, captured, caplog):
        with caplog.at_level(logging.INFO):
            get_logger("x").info("private")
        assert captured.last["message"] == "private"
        assert "private" not in caplog.text

    def test_reset_allows_reconfiguration(self):
        configure_logging(stream=StringIO())
        reset_logging()
        assert logging.getLogger("procurement_kernel").handlers == []
        stream = StringIO()
        configure_logging(stream=stream)
        get_logger("x").info("again")
        assert "again" in stream.getvalue()
