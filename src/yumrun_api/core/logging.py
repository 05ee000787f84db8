from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


_STDLIB_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "apscheduler.executors.default": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, SQLAlchemy, APScheduler) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in record.__dict__.items() if key not in _STDLIB_RECORD_ATTRS}
        extra.setdefault("stdlib_logger", record.name)

        logger.bind(**extra).opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def _trace_context() -> Dict[str, str]:
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return {}
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}",
    }


def _json_sink(metadata: Dict[str, Any]):
    def sink(message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["extra"].pop("stdlib_logger", record["name"]),
            **metadata,
            **_trace_context(),
        }
        payload.update(record["extra"])

        exception = record["exception"]
        if exception is not None and exception.type is not None:
            payload["exception"] = {
                "type": exception.type.__name__,
                "message": str(exception.value),
            }

        sys.stderr.write(json.dumps(payload, default=str) + "\n")

    return sink


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure Loguru and the stdlib bridge.

    JSON lines (with trace correlation) are emitted unless ``json_output`` is
    disabled, in which case Loguru's coloured console format is used for local
    development.
    """

    logger.remove()
    if json_output:
        metadata = {"service": service_name, "environment": environment, "version": version}
        logger.add(_json_sink(metadata), level=level.upper(), backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=level.upper(), backtrace=True, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, logger_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(logger_level)
