"""
Tests for structured logging, probes and metrics.
"""

import logging

import pytest

from forgeagent.observability.logging import (
    StructuredFormatter,
    clear_trace_id,
    get_logger,
    set_trace_id,
    trace_id_ctx,
)
from forgeagent.observability.metrics import get_metrics_collector
from forgeagent.observability.probe import probe


def format_record(message: str, **extra) -> str:
    record = logging.LogRecord("forgeagent.core.orchestrator", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return StructuredFormatter().format(record)


class TestLogging:
    def test_trace_id_context(self):
        set_trace_id("exec-1")
        assert trace_id_ctx.get() == "exec-1"
        clear_trace_id()
        assert trace_id_ctx.get() is None

    def test_structured_logger_passes_fields(self, caplog):
        logger = get_logger("forgeagent.test")
        with caplog.at_level(logging.INFO, logger="forgeagent.test"):
            logger.info("Branch created", branch="feature/x")
        record = caplog.records[-1]
        assert record.getMessage() == "Branch created"
        assert record.branch == "feature/x"

    def test_header_and_sorted_fields(self):
        set_trace_id("exec-1")
        line = format_record("Execution finished", ms=12.34, status="completed", tokens=150)

        assert " level=INFO trace=exec-1 mod=orchestrator " in line
        assert " ms=12.3 " in line
        assert line.endswith('msg="Execution finished" status=completed tokens=150')

    def test_values_with_spaces_are_quoted(self):
        line = format_record("Request failed", error="Cancelled by user", skipped=None)

        assert 'error="Cancelled by user"' in line
        assert "skipped" not in line

    def test_exception_includes_traceback(self, caplog):
        logger = get_logger("forgeagent.test")
        with caplog.at_level(logging.ERROR, logger="forgeagent.test"):
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                logger.exception("Agent execution failed", execution_id="exec-1")
        assert caplog.records[-1].exc_info is not None


class TestProbe:
    def test_probe_reraises(self, caplog):
        with caplog.at_level(logging.INFO, logger="forge.probe"):
            with pytest.raises(ValueError):
                with probe("unit.fail"):
                    raise ValueError("boom")
        record = caplog.records[-1]
        assert record.ok is False
        assert record.error == "ValueError"

    def test_probe_logs_labels(self, caplog):
        with caplog.at_level(logging.INFO, logger="forge.probe"):
            with probe("tool.read_file", ticket="AXO-1"):
                pass
        record = caplog.records[-1]
        assert record.op == "tool.read_file"
        assert record.ok is True
        assert record.ticket == "AXO-1"
        assert record.ms >= 0


class TestMetrics:
    def test_business_metrics(self):
        metrics = get_metrics_collector()
        metrics.record_model_call("m", success=True, input_tokens=10, output_tokens=5)
        metrics.record_tool_call("read_file", success=False)
        metrics.record_execution("sonnet_implementation", "completed", 1.5, 150, 2)
        metrics.record_execution("sonnet_implementation", "failed", 0.1, 0, 0)

        data = get_metrics_collector().get_business_metrics()
        assert data["executions"] == {"completed": 1, "failed": 1}
        assert data["tool_calls"] == {"read_file": 1}
        assert data["tokens_used"] == 150
        assert data["cost_cents"] == 2
