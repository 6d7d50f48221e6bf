"""
Logging utilities for Cafe Printer.

- RequestIdFilter attaches request_id and path (when in a Flask request context)
  and the id of the print job currently being processed by the worker thread
- JsonFormatter emits structured logs when CAFEPRINTER_JSON_LOGS=true
- configure_logging() initializes root logging with journald or console, and integrates with Flask's logger
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

_job_context = threading.local()


@contextmanager
def job_context(job_id: Optional[str]) -> Iterator[None]:
    """
    Tag every log record emitted on this thread with job_id for the duration of the block.
    """
    previous = getattr(_job_context, "job_id", None)
    _job_context.job_id = job_id
    try:
        yield
    finally:
        _job_context.job_id = previous


def current_job_id() -> str:
    return getattr(_job_context, "job_id", None) or "-"


class RequestIdFilter(logging.Filter):
    """
    Attach request-scoped metadata (request_id, path) and the active job id to log records.
    Safely degrades outside of a Flask request context.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            from flask import g, has_request_context, request  # lazy import

            record.request_id = g.request_id if has_request_context() and hasattr(g, "request_id") else "-"
            record.path = request.path if has_request_context() else "-"
        except Exception:
            record.request_id = "-"
            record.path = "-"
        record.job_id = current_job_id()
        return True


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter with timestamp, level, logger, message, request_id, job_id, and path.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        from json import dumps

        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "job_id": getattr(record, "job_id", "-"),
        }
        path = getattr(record, "path", None)
        if path is not None:
            base["path"] = path
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return dumps(base, ensure_ascii=False)


PLAIN_FORMAT = "[%(asctime)s] %(levelname)s %(request_id)s job=%(job_id)s %(name)s: %(message)s"
JOURNAL_IDENTIFIER = "cafe-printer"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").strip().lower() in ("1", "true", "yes", "on")


def _build_formatter() -> logging.Formatter:
    if _env_flag("CAFEPRINTER_JSON_LOGS"):
        return JsonFormatter()
    return logging.Formatter(PLAIN_FORMAT)


def _build_handler() -> logging.Handler:
    # Under systemd the journal keeps the syslog identifier; elsewhere log to stderr
    try:
        from systemd.journal import JournalHandler  # type: ignore

        return JournalHandler(SYSLOG_IDENTIFIER=JOURNAL_IDENTIFIER)
    except Exception:
        return logging.StreamHandler()


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure root logging for the application and the worker thread.

    - Level comes from the argument, else CAFEPRINTER_LOG_LEVEL, else INFO
    - Existing root handlers are replaced, so repeated app factory calls do not duplicate output
    - One handler (journald when importable, else stderr) carries RequestIdFilter,
      so formats may use %(request_id)s, %(path)s and %(job_id)s
    - The Flask app logger ("cafe_printer") propagates to root instead of keeping its own handler

    Returns the configured root logger.
    """
    root = logging.getLogger()
    root.setLevel((level or os.environ.get("CAFEPRINTER_LOG_LEVEL", "INFO")).upper())

    handler = _build_handler()
    handler.setFormatter(_build_formatter())
    handler.addFilter(RequestIdFilter())
    root.handlers = [handler]

    app_logger = logging.getLogger("cafe_printer")
    app_logger.handlers = []
    app_logger.propagate = True

    return root


__all__ = ["JsonFormatter", "PLAIN_FORMAT", "RequestIdFilter", "configure_logging", "current_job_id", "job_context"]
