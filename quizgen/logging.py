import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterable, Optional

LOGGER_NAME = "quizgen"
_CONTEXT_FIELDS = ("run_id", "file_name", "stage", "strategy")

_log_ctx: ContextVar[dict] = ContextVar("quizgen_log_context", default={})


def set_log_context(**kwargs):
    # copy so sibling tasks never observe each other's context
    _log_ctx.set({**_log_ctx.get(), **kwargs})


def clear_log_context(keys: Optional[Iterable[str]] = None):
    if keys is None:
        _log_ctx.set({})
        return
    current = dict(_log_ctx.get())
    for key in keys:
        current.pop(key, None)
    _log_ctx.set(current)


def get_log_context() -> dict:
    return dict(_log_ctx.get())


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        data = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            ),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            data[field] = getattr(record, field, None) or ctx.get(field)

        if hasattr(record, "duration_ms"):
            data["duration_ms"] = record.duration_ms
        if hasattr(record, "metrics"):
            data["metrics"] = record.metrics
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)

        data = {k: v for k, v in data.items() if v is not None}
        return json.dumps(data, ensure_ascii=False)


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def setup_logging(level=logging.INFO, log_file: str = None) -> logging.Logger:
    logger = get_logger()
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = JsonFormatter()

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger
