"""
Metrics for agent executions backed by OpenTelemetry.

Business metrics tracked:
- model round-trips and failures per model
- tool invocations per tool and outcome
- executions per protocol and final status
- tokens and cost consumed
"""

from collections import defaultdict
from typing import Any

from opentelemetry.metrics import Counter, Histogram, Meter, NoOpMeter

from .logging import get_logger

logger = get_logger(__name__)


class MetricsCollector:
    """Centralized metrics collection and management."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}

        # In-process aggregates for the admin API
        self._executions = defaultdict(int)
        self._tool_calls = defaultdict(int)
        self._tokens_used = 0
        self._cost_cents = 0

        self._setup_default_metrics()

    def _setup_default_metrics(self):
        self._counters["model_calls_total"] = self.meter.create_counter(
            "forge_model_calls_total", description="Model round-trips", unit="1"
        )
        self._counters["model_errors_total"] = self.meter.create_counter(
            "forge_model_errors_total", description="Failed model round-trips", unit="1"
        )
        self._counters["tool_calls_total"] = self.meter.create_counter(
            "forge_tool_calls_total", description="Tool invocations", unit="1"
        )
        self._counters["executions_total"] = self.meter.create_counter(
            "forge_executions_total", description="Finished agent executions", unit="1"
        )
        self._counters["tokens_total"] = self.meter.create_counter(
            "forge_tokens_total", description="Tokens consumed", unit="1"
        )
        self._histograms["execution_duration"] = self.meter.create_histogram(
            "forge_execution_duration_seconds",
            description="Agent execution duration",
            unit="s",
        )

    def record_model_call(self, model: str, success: bool, input_tokens: int = 0, output_tokens: int = 0):
        attributes = {"model": model}
        self._counters["model_calls_total"].add(1, attributes)
        if not success:
            self._counters["model_errors_total"].add(1, attributes)
            return
        self._counters["tokens_total"].add(input_tokens, {**attributes, "direction": "input"})
        self._counters["tokens_total"].add(output_tokens, {**attributes, "direction": "output"})

    def record_tool_call(self, tool: str, success: bool):
        self._counters["tool_calls_total"].add(1, {"tool": tool, "success": str(success).lower()})
        self._tool_calls[tool] += 1

    def record_execution(self, protocol: str, status: str, duration: float, tokens: int, cost_cents: int):
        attributes = {"protocol": protocol, "status": status}
        self._counters["executions_total"].add(1, attributes)
        self._histograms["execution_duration"].record(duration, attributes)

        self._executions[status] += 1
        self._tokens_used += tokens
        self._cost_cents += cost_cents

    def get_business_metrics(self) -> dict[str, Any]:
        """Aggregated counts since process start."""
        return {
            "executions": dict(self._executions),
            "tool_calls": dict(self._tool_calls),
            "tokens_used": self._tokens_used,
            "cost_cents": self._cost_cents,
        }


_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter) -> MetricsCollector:
    """Setup global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter)
    logger.info("Metrics collector installed", meter=getattr(meter, "name", "-"))
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector, creating a no-op backed one on first use."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(NoOpMeter("forgeagent"))
    return _metrics_collector

