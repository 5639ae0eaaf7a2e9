"""
Structured logging tests.
"""

import io
import json
import logging

import pytest

from reliefchain.ledger import Ledger
from reliefchain.observability import (
    RegistryLayer,
    configure_logging,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    timed_operation,
)
from reliefchain.registry import SupplyRegistry
from reliefchain.verification import OrganizationRegistry


def events(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestStructuredLogging:
    """Tests for the JSON handler and RegistryLogger."""

    def test_json_lines(self):
        stream = io.StringIO()
        configure_logging(level="debug", fmt="json", stream=stream)
        set_correlation_id("corr-test")

        get_logger("unit", RegistryLayer.REGISTRY).info("hello", token_id=3)

        (event,) = events(stream)
        assert event["message"] == "hello"
        assert event["level"] == "info"
        assert event["layer"] == "registry"
        assert event["logger"] == "reliefchain.registry.unit"
        assert event["correlation_id"] == "corr-test"
        assert event["context"] == {"token_id": 3}

    def test_text_format(self):
        stream = io.StringIO()
        configure_logging(level="info", fmt="text", stream=stream)
        get_logger("unit", RegistryLayer.LEDGER).warning("careful", error_code="PAUSED")
        line = stream.getvalue().strip()
        assert line.startswith("WARNING ledger")
        assert "error_code=PAUSED" in line

    def test_level_filtering(self):
        stream = io.StringIO()
        configure_logging(level="warning", stream=stream)
        get_logger("unit", RegistryLayer.CLI).info("quiet")
        assert stream.getvalue() == ""

    def test_reconfigure_replaces_handler(self):
        first, second = io.StringIO(), io.StringIO()
        configure_logging(stream=first)
        configure_logging(stream=second)
        get_logger("unit", RegistryLayer.CONFIG).info("once")
        assert first.getvalue() == ""
        assert len(events(second)) == 1

    def test_correlation_id_generated(self):
        set_correlation_id("")
        cid = get_correlation_id()
        assert cid.startswith("corr-")
        assert get_correlation_id() == cid

    def test_timed_operation(self):
        stream = io.StringIO()
        configure_logging(stream=stream)
        logger = get_logger("unit", RegistryLayer.SNAPSHOT)

        @timed_operation(logger, "work")
        def work():
            return 5

        assert work() == 5
        (event,) = events(stream)
        assert event["operation"] == "work"
        assert event["duration_ms"] >= 0


class TestOperationLogging:
    """Committed calls log at INFO, faults at WARNING, aborts at ERROR."""

    @pytest.fixture
    def stream(self):
        stream = io.StringIO()
        configure_logging(level="info", stream=stream)
        return stream

    def test_committed_and_rejected(self, stream):
        registry = SupplyRegistry("admin", ledger=Ledger(100), verifier=OrganizationRegistry("admin", ["org"]))
        registry.mint("org", "org", "u", "food", 1)
        registry.lock("other", 1)

        ledger_events = [e for e in events(stream) if e.get("layer") == "ledger"]
        committed, rejected = ledger_events
        assert committed["level"] == "info"
        assert committed["operation"] == "mint"
        assert committed["context"]["height"] == 100
        assert rejected["level"] == "warning"
        assert rejected["error_code"] == "NOT_OWNER"
        assert rejected["context"]["caller"] == "other"

    def test_aborted_call_logs_traceback(self, stream):
        class Broken(OrganizationRegistry):
            def is_verified(self, identity):
                raise RuntimeError("down")

        registry = SupplyRegistry("admin", ledger=Ledger(100), verifier=Broken("admin"))
        with pytest.raises(RuntimeError):
            registry.mint("org", "org", "u", "food", 1)

        (aborted,) = [e for e in events(stream) if e["level"] == "error"]
        assert "RuntimeError" in aborted["exception"]
