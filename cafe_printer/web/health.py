from __future__ import annotations

"""
Health endpoint for Cafe Printer.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded")
- Background worker status and queue size (via cafe_printer.printing.worker.worker_status)
- Configured printer type, whether its handle is currently open, and whether a logo is loaded

The printer itself is not queried here: the worker thread is the only code
allowed to touch the device.
"""

from typing import Any, Dict

from flask import Blueprint

from cafe_printer.printing.worker import worker_status

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    status: Dict[str, Any] = {"status": "ok"}
    status.update(worker_status())
    if not status.get("worker_alive"):
        status["status"] = "degraded"
        status["reason"] = "worker_not_running"
    return status, 200
