"""Unit tests for MXP logging and observability.

This module tests the logging infrastructure, performance monitoring,
and observability hooks.
"""

import json
import logging
import pytest
import tempfile
from pathlib import Path
from unittest.mock import patch

from mxp.mxp_logging import (
    setup_logging,
    JsonFormatter,
    PerformanceMonitor,
    log_performance,
    log_operation,
    ObservabilityHooks,
    log_delta_applied,
    log_document_healed,
    log_error_with_context,
    memory_usage,
    observability_hooks,
    performance_monitor,
)


@pytest.fixture(autouse=True)
def reset_mxp_logger():
    """Leave the shared ``mxp`` logger and monitor as they were found."""
    logger = logging.getLogger("mxp")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    performance_monitor.clear()
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
    performance_monitor.clear()


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        formatter = JsonFormatter()

        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, __file__, 10, "Test message", (), None)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "module" in data
        assert "function" in data
        assert "line" in data

    def test_json_formatter_with_exception(self):
        """Test JSON formatting with exception info."""
        formatter = JsonFormatter()

        logger = logging.getLogger("test")
        try:
            raise ValueError("Test exception")
        except ValueError:
            import sys
            record = logger.makeRecord("test", logging.ERROR, __file__, 10, "Test message", (), sys.exc_info())

        data = json.loads(formatter.format(record))

        assert data["level"] == "ERROR"
        assert "ValueError" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        """Test JSON formatting with extra fields."""
        formatter = JsonFormatter()

        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, __file__, 10, "Test message", (), None)
        record.extra_fields = {"node_id": "abc"}

        data = json.loads(formatter.format(record))

        assert data["node_id"] == "abc"


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_metric(self):
        monitor = PerformanceMonitor()

        monitor.record_metric("test_metric", 42, {"tag": "test"})

        metrics = monitor.get_metrics("test_metric")
        assert len(metrics["test_metric"]) == 1
        assert metrics["test_metric"][0]["value"] == 42
        assert metrics["test_metric"][0]["tags"]["tag"] == "test"
        assert "timestamp" in metrics["test_metric"][0]

    def test_get_all_metrics(self):
        monitor = PerformanceMonitor()

        monitor.record_metric("metric1", 1)
        monitor.record_metric("metric2", 2)
        monitor.record_metric("metric1", 3)

        all_metrics = monitor.get_metrics()

        assert len(all_metrics) == 2
        assert [metric["value"] for metric in all_metrics["metric1"]] == [1, 3]
        assert all_metrics["metric2"][0]["value"] == 2


class TestLogPerformance:
    """Test cases for log_performance decorator."""

    def test_records_duration_and_memory(self):
        @log_performance("test_operation")
        def test_function():
            return "test_result"

        assert test_function() == "test_result"

        durations = performance_monitor.get_metrics("test_operation_duration")["test_operation_duration"]
        assert len(durations) == 1
        assert durations[0]["value"] >= 0
        assert durations[0]["tags"]["status"] == "success"
        rss = performance_monitor.get_metrics("test_operation_memory_rss")["test_operation_memory_rss"]
        assert rss[0]["value"] > 0

    def test_records_error_and_reraises(self):
        @log_performance("test_operation")
        def test_function():
            raise ValueError("Test error")

        with pytest.raises(ValueError):
            test_function()

        durations = performance_monitor.get_metrics("test_operation_duration")["test_operation_duration"]
        assert durations[0]["tags"]["status"] == "error"
        assert durations[0]["tags"]["error_type"] == "ValueError"

    def test_memory_usage_fields(self):
        usage = memory_usage()
        assert usage["rss"] > 0
        assert set(usage) == {"rss", "vms", "percent"}


class TestLogOperation:
    """Test cases for log_operation context manager."""

    def test_log_operation_success(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="mxp.operations"):
            with log_operation("test_operation", param1="value1"):
                pass

        messages = [record.getMessage() for record in caplog.records]
        assert any("Completed operation: test_operation" in message for message in messages)
        assert not any(record.levelno >= logging.ERROR for record in caplog.records)

    def test_log_operation_with_exception(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="mxp.operations"):
            with pytest.raises(ValueError):
                with log_operation("test_operation"):
                    raise ValueError("Test error")

        errors = [record for record in caplog.records if record.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "Test error" in errors[0].getMessage()
        assert errors[0].extra_fields["status"] == "failed"


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_register_and_trigger_hooks(self):
        hooks = ObservabilityHooks()
        received = {}

        def test_callback(**data):
            received.update(data)

        hooks.register_hook("test_event", test_callback)
        hooks.trigger_hooks("test_event", test_param="test_value")

        assert received == {"test_param": "test_value"}

    def test_log_tree_event_passes_node_id(self):
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("node_touched", lambda **data: received.append(data))

        hooks.log_tree_event("node_touched", node_id="abc", extra="value")

        assert received[0]["node_id"] == "abc"
        assert received[0]["extra"] == "value"
        assert "event_type" not in received[0]

    def test_unregister_hook(self):
        hooks = ObservabilityHooks()
        calls = []

        def callback(**data):
            calls.append(data)

        hooks.register_hook("test_event", callback)
        hooks.unregister_hook("test_event", callback)
        hooks.trigger_hooks("test_event", param="value")

        assert calls == []

    def test_hook_failure_handling(self, caplog):
        """Hook failures are logged, not raised."""
        hooks = ObservabilityHooks()

        def failing_callback(**data):
            raise ValueError("Hook failed")

        hooks.register_hook("test_event", failing_callback)

        with caplog.at_level(logging.ERROR, logger="mxp.observability"):
            hooks.trigger_hooks("test_event", param="value")

        assert "Hook failed" in caplog.text


class TestLoggingFunctions:
    """Test cases for logging convenience functions."""

    def test_log_delta_applied(self):
        with patch("mxp.mxp_logging.observability_hooks") as mock_hooks:
            log_delta_applied("Update", "node-1", updated=3, removed=0)

            mock_hooks.log_tree_event.assert_called_once()
            call_args = mock_hooks.log_tree_event.call_args
            assert call_args[0] == ("delta_update",)
            assert call_args[1]["node_id"] == "node-1"
            assert call_args[1]["updated"] == 3

    def test_log_document_healed(self, tmp_path):
        with patch("mxp.mxp_logging.observability_hooks") as mock_hooks:
            log_document_healed(tmp_path / "a.md", "node-1", ["id", "title"])

            call_args = mock_hooks.log_tree_event.call_args
            assert call_args[0] == ("document_healed",)
            assert call_args[1]["missing_fields"] == ["id", "title"]
            assert call_args[1]["path"].endswith("a.md")

    def test_log_error_with_context(self, caplog):
        error = ValueError("Test error")
        context = {"operation": "test_operation", "param": "value"}

        with caplog.at_level(logging.ERROR, logger="mxp.errors"):
            log_error_with_context(error, context, extra_param="extra_value")

        record = caplog.records[-1]
        assert "Error in test_operation: Test error" in record.getMessage()
        assert record.extra_fields["context"] == context
        assert record.extra_fields["extra_param"] == "extra_value"
        assert record.extra_fields["error_type"] == "ValueError"


class TestLoggingIntegration:
    """Integration tests for logging functionality."""

    def test_setup_logging(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "test.log"

            setup_logging(log_level=logging.DEBUG, log_file=log_file)
            logging.getLogger("mxp.test").info("Test message")
            for handler in logging.getLogger("mxp").handlers:
                handler.flush()

            content = log_file.read_text()
            assert "Test message" in content
            for line in content.strip().split("\n"):
                json.loads(line)

            for handler in logging.getLogger("mxp").handlers:
                handler.close()

    def test_end_to_end_logging_flow(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "test.log"

            setup_logging(log_level=logging.DEBUG, log_file=log_file)

            seen = []
            observability_hooks.register_hook("delta_create", lambda **data: seen.append(data))
            try:
                log_delta_applied("create", "node-1", updated=2, removed=0)
                performance_monitor.record_metric("test_metric", 42)
            finally:
                observability_hooks.hooks.pop("delta_create", None)

            for handler in logging.getLogger("mxp").handlers:
                handler.flush()
            content = log_file.read_text()
            assert "Tree event: delta_create" in content
            assert "Metric recorded: test_metric=42" in content
            assert seen[0]["updated"] == 2

            for handler in logging.getLogger("mxp").handlers:
                handler.close()
