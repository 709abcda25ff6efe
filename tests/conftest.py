"""
Pytest fixtures for the procurement lifecycle test suite.

Provides:
- Structured logging configured once per session, LogContext cleared per test
- A deterministic clock and the shipped default configuration
- An engine over the in-memory store with a recording notification sink
- One actor per configured role
- ``flow``: helpers that drive an order to a given point of its lifecycle
"""

import json
import logging
from io import StringIO

import pytest

from procurement_config import DEFAULT_CONFIG_PATH, load_engine_config
from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from procurement_modules.actors import Actor
from procurement_services.lifecycle_engine import ProcurementLifecycleEngine

from support.memory_store import InMemoryEntityStore
from support.scenarios import LifecycleFlow
from support.sinks import RecordingSink


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """JSON logging at DEBUG into a throwaway stream, so every log call is formatted."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """No correlation id or actor leaks from one test into the next."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture procurement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine, vendor):
            engine.submit_order(vendor, ...)
            logs = captured_logs()
            assert any(r["message"] == "lifecycle_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("procurement_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Engine fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture(scope="session")
def engine_config():
    return load_engine_config(DEFAULT_CONFIG_PATH)


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def sink(deterministic_clock):
    return RecordingSink(deterministic_clock)


@pytest.fixture
def engine(store, deterministic_clock, engine_config, sink):
    return ProcurementLifecycleEngine(
        store,
        clock=deterministic_clock,
        config=engine_config,
        sink=sink,
        retry_backoff=0,
    )


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def vendor():
    return Actor("vendor-1", "Vendor", department="Kitchen", display_name="Kitchen vendor")


@pytest.fixture
def other_vendor():
    return Actor("vendor-2", "Vendor", department="Bar")


@pytest.fixture
def head():
    return Actor("head-1", "DepartmentHead", department="Kitchen")


@pytest.fixture
def purchasing():
    return Actor("buyer-1", "Purchasing")


@pytest.fixture
def warehouse():
    return Actor("store-1", "Warehouse")


@pytest.fixture
def auditor():
    return Actor("audit-1", "Auditor")


@pytest.fixture
def cashier():
    return Actor("cash-1", "Cashier")


@pytest.fixture
def admin():
    return Actor("admin-1", "Admin")


@pytest.fixture
def flow(engine, vendor, head, purchasing, warehouse, auditor):
    return LifecycleFlow(engine, vendor, head, purchasing, warehouse, auditor)
