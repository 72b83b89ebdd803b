"""
Always-on timers around I/O boundaries: each probe opens an OpenTelemetry span and
logs one line with its duration and outcome.
"""

import contextlib
import time

from opentelemetry import trace

from .logging import get_logger

log = get_logger("forge.probe")

tracer = trace.get_tracer("forgeagent")


@contextlib.contextmanager
def probe(op: str, **labels):
    """
    Time the enclosed block as operation `op`.

    Labels are set on the span and appended to the log line. Exceptions are
    recorded and re-raised.
    """
    start_time = time.perf_counter()
    error_type = None

    with tracer.start_as_current_span(op) as span:
        for key, value in labels.items():
            span.set_attribute(key, str(value))
        try:
            yield
        except Exception as e:
            error_type = type(e).__name__
            raise
        finally:
            log.info(
                op,
                op=op,
                ms=(time.perf_counter() - start_time) * 1000,
                ok=error_type is None,
                error=error_type,
                **labels,
            )
