"""
Observability for agent executions.

- Structured logging: single-line `key=value` records carrying trace IDs
- Probes: always-on timing of gateway calls and tool invocations
- Tracing: OpenTelemetry spans with optional OTLP export
- Metrics: OpenTelemetry counters for model calls, tool calls, executions and tokens

Configuration:
    - FORGE_OBSERVABILITY__LOG_LEVEL=INFO
    - FORGE_OBSERVABILITY__ENABLE_TRACING=true
    - FORGE_OBSERVABILITY__OTLP_ENDPOINT=http://collector:4317
"""

from .logging import get_logger, setup_logging
from .metrics import get_metrics_collector, setup_metrics
from .probe import probe
from .tracing import get_tracing_manager, setup_tracing, trace_span

__all__ = [
    "get_logger",
    "setup_logging",
    "get_metrics_collector",
    "setup_metrics",
    "probe",
    "trace_span",
    "setup_tracing",
    "get_tracing_manager",
]
