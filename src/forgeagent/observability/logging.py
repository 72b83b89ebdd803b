"""
Key=value logging for Forge.

Every line carries the active trace, which the orchestrator sets to the execution
id, so one execution's gateway, tool and store lines can be grepped together:

    t=... level=INFO trace=6f1c... mod=orchestrator op=execute msg="Branch created: feature/axo-1-x"
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)

_loggers: dict[str, "StructuredLogger"] = {}

# Attributes every LogRecord has; anything else on a record came from `extra`
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
}
_HEADER_FIELDS = frozenset({"trace_id", "op", "ms"})


def _field(key: str, value) -> str:
    text = str(value)
    if not text or any(c.isspace() for c in text) or '"' in text:
        text = '"' + text.replace('"', '\\"') + '"'
    return f"{key}={text}"


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        trace_id = trace_id_ctx.get() or getattr(record, "trace_id", None) or "-"
        mod = record.name.rsplit(".", 1)[-1]
        op = getattr(record, "op", record.funcName)
        duration = getattr(record, "ms", None)

        parts = [
            f"t={datetime.now(UTC).isoformat()}",
            f"level={record.levelname}",
            f"trace={trace_id}",
            f"mod={mod}",
            f"op={op}",
        ]
        if duration is not None:
            parts.append(f"ms={duration:.1f}")
        parts.append(_field("msg", record.getMessage()))
        parts.extend(
            _field(key, value)
            for key, value in sorted(record.__dict__.items())
            if key not in _RECORD_ATTRS and key not in _HEADER_FIELDS and value is not None
        )

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Logger taking structured fields as keyword arguments."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, exc_info: bool = False, **fields):
        extra = {k: v for k, v in fields.items() if k not in _RECORD_ATTRS}
        extra["trace_id"] = trace_id_ctx.get()
        self.logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **fields):
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields):
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields):
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, **fields):
        self._log(logging.ERROR, msg, **fields)

    def exception(self, msg: str, **fields):
        """Error line with the active exception's traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **fields)


def get_logger(name: str) -> StructuredLogger:
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO") -> None:
    """Route the root logger through StructuredFormatter on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    # Client libraries log every request at INFO
    for noisy in ("httpx", "httpcore", "opentelemetry"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def set_trace_id(trace_id: str | None) -> None:
    trace_id_ctx.set(trace_id)


def clear_trace_id() -> None:
    trace_id_ctx.set(None)
