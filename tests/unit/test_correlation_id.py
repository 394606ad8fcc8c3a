"""Unit tests for correlation ID context and the logger adapter."""

import logging
import threading
import uuid

import pytest

from sitehost.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    component_logger,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(name="logger_adapter")
def logger_adapter_fixture():
    """Create a CorrelationLoggerAdapter for a sitehost component."""
    return CorrelationLoggerAdapter(logging.getLogger("sitehost.transport.http1"), {})


class TestCorrelationIdContext:
    """Correlation ID context management."""

    def test_generate_correlation_id_returns_unique_uuids(self):
        """Generated IDs are distinct UUID strings."""
        first = generate_correlation_id()
        second = generate_correlation_id()
        uuid.UUID(first)
        assert first != second

    def test_set_get_and_clear(self):
        """Setters reflect via getter and clearing removes the ID."""
        set_correlation_id("request-1")
        assert get_correlation_id() == "request-1"
        clear_correlation_id()
        assert get_correlation_id() is None

    def test_isolated_between_threads(self):
        """Separate worker threads keep independent IDs."""
        results = {}

        def worker(worker_id: str):
            set_correlation_id(f"worker-{worker_id}")
            results[worker_id] = get_correlation_id()
            clear_correlation_id()

        threads = [threading.Thread(target=worker, args=(str(i),)) for i in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == {str(i): f"worker-{i}" for i in range(5)}


class TestCorrelationLoggerAdapter:
    """Adapter injection of correlation ID and component."""

    def test_injects_correlation_id(self, logger_adapter):
        """The current ID is copied into extra."""
        set_correlation_id("test-correlation-123")
        _, kwargs = logger_adapter.process("Test message", {})
        clear_correlation_id()
        assert kwargs["extra"]["correlation_id"] == "test-correlation-123"

    def test_defaults_when_missing(self, logger_adapter):
        """Without an ID the placeholder is used."""
        clear_correlation_id()
        _, kwargs = logger_adapter.process("Test message", {})
        assert kwargs["extra"]["correlation_id"] == "-"

    def test_component_strips_project_prefix(self, logger_adapter):
        """Component is the logger name below the project logger."""
        _, kwargs = logger_adapter.process("Test message", {})
        assert kwargs["extra"]["component"] == "transport.http1"

    def test_foreign_logger_keeps_full_name(self):
        """Loggers outside the project report their full name."""
        adapter = CorrelationLoggerAdapter(logging.getLogger("other.module"), {})
        _, kwargs = adapter.process("Test message", {})
        assert kwargs["extra"]["component"] == "other.module"

    def test_does_not_modify_caller_extra(self, logger_adapter):
        """Caller-supplied extra dictionaries remain untouched."""
        caller_extra = {"event": "request_complete"}
        _, kwargs = logger_adapter.process("Test message", {"extra": caller_extra})
        assert caller_extra == {"event": "request_complete"}
        assert kwargs["extra"]["event"] == "request_complete"

    def test_component_logger_builds_adapter(self):
        """component_logger names loggers under the project namespace."""
        adapter = component_logger("config")
        assert isinstance(adapter, CorrelationLoggerAdapter)
        assert adapter.logger.name == "sitehost.config"

    def test_records_carry_context(self, caplog):
        """Logged records expose correlation_id and component attributes."""
        caplog.set_level(logging.INFO, logger="sitehost")
        set_correlation_id("abc")
        component_logger("handlers.static").info("hello", extra={"event": "asset_lookup"})
        clear_correlation_id()
        record = caplog.records[-1]
        assert record.correlation_id == "abc"
        assert record.component == "handlers.static"
        assert record.event == "asset_lookup"
