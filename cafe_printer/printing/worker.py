"""
Print queue, single-consumer scheduler, job state, and print orchestration.

This module owns:
- PrintQueue: a strictly FIFO, unbounded buffer of PrintJobs
- PrinterRuntime: the explicitly constructed config + transport + queue + logo bundle
- A consumer thread that drains one job per fixed-interval tick and prints it
  to completion before the next tick is considered
- An in-memory job registry with basic lifecycle (queued -> running -> success/error)
- Public helpers to enqueue jobs, run a startup self-test, and query status

It is Flask-agnostic and is used from both web routes and
CLI contexts. Logging integrates with the application's configured logging.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from cafe_printer.core.assets import load_logo_bytes
from cafe_printer.core.config import get_setting, load_config
from cafe_printer.core.logging import job_context
from cafe_printer.printing.compose import ComposedJob, compose_job, rasterize_stage
from cafe_printer.printing.errors import JobTimeout, PrinterError, call_with_timeout
from cafe_printer.printing.jobs import PrintJob, StageResult, make_job
from cafe_printer.printing.raster import RasterBitmap
from cafe_printer.printing.transport import Transport, TransportError, create_transport

logger = logging.getLogger(__name__)

JOBS: Dict[str, Dict[str, Any]] = {}
JOBS_LOCK = threading.RLock()
JOBS_MAX = int(os.environ.get("CAFEPRINTER_JOBS_MAX", "200"))

WORKER_THREAD: Optional[threading.Thread] = None
WORKER_STARTED = False
_STOP_EVENT = threading.Event()
_RUNTIME: Optional["PrinterRuntime"] = None
_RUNTIME_LOCK = threading.Lock()

MIN_INTERVAL_SECONDS = 0.05


class PrintQueue:
    """
    Ordered FIFO of pending jobs. Producers append from request threads; the
    single consumer drains from its own thread.
    """

    def __init__(self) -> None:
        self._items: Deque[PrintJob] = deque()
        self._lock = threading.Lock()

    def enqueue(self, job: PrintJob) -> int:
        with self._lock:
            self._items.append(job)
            return len(self._items)

    def drain_one(self) -> Optional[PrintJob]:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def pending_ids(self) -> List[str]:
        with self._lock:
            return [job.id for job in self._items]


class PrinterRuntime:
    """
    Everything one printer needs at run time, owned by whoever constructs it.
    The worker thread is the only caller of the transport.
    """

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        transport: Optional[Transport] = None,
        queue: Optional[PrintQueue] = None,
        logo_bytes: Optional[bytes] = None,
        load_logo: bool = True,
    ):
        self.config: Dict[str, Any] = dict(config) if config is not None else load_config()
        self.transport = transport if transport is not None else create_transport(self.config)
        self.queue = queue if queue is not None else PrintQueue()
        if logo_bytes is None and load_logo:
            logo_bytes = load_logo_bytes(self.config)
        self.logo_bytes = logo_bytes
        # Serializes the queue consumer and explicit self-test prints
        self.print_lock = threading.Lock()
        self._logo_result: Optional[StageResult[RasterBitmap]] = None

    def logo_bitmap(self) -> Optional[RasterBitmap]:
        """Rasterize the logo on first use and reuse it for every later receipt."""
        if not self.logo_bytes:
            return None
        if self._logo_result is None:
            self._logo_result = rasterize_stage(
                self.logo_bytes,
                self.config,
                stage="logo",
                width_dots=get_setting(self.config, "logo_width_dots", int),
            )
            if not self._logo_result.ok:
                logger.warning("Logo disabled: %s", self._logo_result.describe())
        return self._logo_result.value if self._logo_result.ok else None

    @property
    def printer_type(self) -> str:
        return get_setting(self.config, "printer_type", str)

    def close(self) -> None:
        self.transport.close()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _prune_jobs_if_needed() -> None:
    with JOBS_LOCK:
        while len(JOBS) > JOBS_MAX:
            oldest_id = min(JOBS.values(), key=lambda j: j.get("created_at", ""))["id"]
            JOBS.pop(oldest_id, None)


def _create_job(job_id: str, meta: Optional[Dict[str, Any]] = None) -> str:
    now = _utc_now_iso()
    entry: Dict[str, Any] = {
        "id": job_id,
        "status": "queued",
        "created_at": now,
        "updated_at": now,
    }
    if meta:
        entry.update(meta)
    with JOBS_LOCK:
        JOBS[job_id] = entry
        _prune_jobs_if_needed()
    return job_id


def _update_job(job_id: Optional[str], **updates: Any) -> None:
    if not job_id:
        return
    with JOBS_LOCK:
        entry = JOBS.get(job_id)
        if not entry:
            return
        entry.update(updates)
        entry["updated_at"] = _utc_now_iso()


def _deliver(runtime: PrinterRuntime, job: PrintJob) -> ComposedJob:
    """
    Compose the job and push it through the transport under the write bound.
    Image failures are already folded into the composed buffer; transport
    failures and timeouts propagate.
    """
    composed = compose_job(job, runtime.config, logo=runtime.logo_bitmap())
    for stage in composed.failed_stages:
        logger.warning("Continuing without %s", stage.describe())

    transport = runtime.transport

    def _send() -> None:
        transport.ensure_open()
        transport.write(composed.commands)

    try:
        call_with_timeout(_send, get_setting(runtime.config, "write_timeout_seconds", float), "write")
    except JobTimeout:
        # The stalled writer may still hold the handle; closing makes it fail and the next job reopens
        transport.close()
        raise
    logger.info("Printed %d bytes via %s", len(composed.commands), transport.describe())
    return composed


def print_job(runtime: PrinterRuntime, job: PrintJob) -> bool:
    """
    Print one job to completion. Never raises; returns True on success.
    """
    with job_context(job.id):
        logger.info("Starting print job: %s", job.summary())
        _update_job(job.id, status="running")
        try:
            with runtime.print_lock:
                composed = _deliver(runtime, job)
        except (TransportError, JobTimeout) as e:
            logger.error("Print job failed: %s: %s", type(e).__name__, e)
            _update_job(job.id, status="error", error=str(e))
            return False
        except Exception as e:
            logger.exception("Print job crashed: %s", e)
            _update_job(job.id, status="error", error=str(e))
            return False
        warnings = [s.describe() for s in composed.failed_stages]
        _update_job(job.id, status="success", warnings=warnings)
        return True


def run_tick(runtime: PrinterRuntime) -> Optional[str]:
    """
    One scheduler tick: drain at most one job and print it. Returns the job id, if any.
    """
    job = runtime.queue.drain_one()
    if job is None:
        return None
    logger.info("Processing queued job %s (%d still waiting)", job.id, len(runtime.queue))
    print_job(runtime, job)
    return job.id


def next_tick(previous: float, interval: float, now: float) -> float:
    """
    Next point on the fixed tick grid at or after now. Ticks missed while a
    long job was printing are skipped rather than run back to back.
    """
    upcoming = previous + interval
    if upcoming >= now:
        return upcoming
    missed = int((now - upcoming) // interval) + 1
    return upcoming + missed * interval


def _consumer_loop(runtime: PrinterRuntime, stop: threading.Event) -> None:
    """
    Worker loop that drains the queue on a fixed interval. Never raises.
    """
    interval = max(MIN_INTERVAL_SECONDS, get_setting(runtime.config, "queue_interval_seconds", float))
    tick = time.monotonic() + interval
    logger.info("Queue consumer running, one job every %.1fs", interval)
    while not stop.wait(max(0.0, tick - time.monotonic())):
        try:
            run_tick(runtime)
        except Exception as e:
            logger.exception("Queue tick failed: %s", e)
        tick = next_tick(tick, interval, time.monotonic())
    logger.info("Queue consumer stopped")


def set_runtime(runtime: Optional[PrinterRuntime]) -> None:
    global _RUNTIME
    with _RUNTIME_LOCK:
        _RUNTIME = runtime


def ensure_runtime(config: Optional[Mapping[str, Any]] = None) -> PrinterRuntime:
    """
    Return the process-wide runtime, building it from config (or the saved config) on first use.
    """
    global _RUNTIME
    with _RUNTIME_LOCK:
        if _RUNTIME is None:
            _RUNTIME = PrinterRuntime(config)
        return _RUNTIME


def ensure_worker(runtime: Optional[PrinterRuntime] = None) -> None:
    """
    Ensure the background consumer thread is started (idempotent).
    """
    global WORKER_THREAD, WORKER_STARTED
    if WORKER_STARTED and WORKER_THREAD and WORKER_THREAD.is_alive():
        return
    rt = runtime or ensure_runtime()
    if runtime is not None:
        set_runtime(runtime)
    _STOP_EVENT.clear()
    t = threading.Thread(target=_consumer_loop, args=(rt, _STOP_EVENT), daemon=True, name="cafe-printer-worker")
    t.start()
    WORKER_THREAD = t
    WORKER_STARTED = True
    logger.info("Background print worker started")


def shutdown(timeout: float = 5.0) -> None:
    """
    Stop the consumer thread and close the transport of the process-wide runtime.
    """
    global WORKER_STARTED
    _STOP_EVENT.set()
    if WORKER_THREAD is not None and WORKER_THREAD.is_alive():
        WORKER_THREAD.join(timeout)
    WORKER_STARTED = False
    with _RUNTIME_LOCK:
        rt = _RUNTIME
    if rt is not None:
        rt.close()


def enqueue_job(job: PrintJob, runtime: Optional[PrinterRuntime] = None) -> str:
    """
    Register and append a job. Returns the job id; printing happens on a later tick.
    """
    rt = runtime or ensure_runtime()
    _create_job(job.id, meta=job.summary())
    depth = rt.queue.enqueue(job)
    logger.info("Job %s added; queue length now %d", job.id, depth)
    return job.id


def self_test_print(runtime: Optional[PrinterRuntime] = None, text: Optional[str] = None) -> str:
    """
    Print immediately, bypassing the tick but not the print lock.

    Raises:
        TransportError or JobTimeout when the printer cannot be reached; the
        caller decides whether that is fatal.
    """
    rt = runtime or ensure_runtime()
    job = make_job(text=text or get_setting(rt.config, "self_test_text", str))
    _create_job(job.id, meta={"origin": "self_test", **job.summary()})
    with job_context(job.id):
        _update_job(job.id, status="running")
        try:
            with rt.print_lock:
                _deliver(rt, job)
        except PrinterError as e:
            _update_job(job.id, status="error", error=str(e))
            raise
    _update_job(job.id, status="success")
    return job.id


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    """
    Retrieve a job by id.
    """
    with JOBS_LOCK:
        entry = JOBS.get(job_id)
        return dict(entry) if entry else None


def list_jobs() -> List[Dict[str, Any]]:
    """
    Return a list of jobs sorted by created_at descending.
    """
    with JOBS_LOCK:
        items = [dict(v) for v in JOBS.values()]
    items.sort(key=lambda j: j.get("created_at", ""), reverse=True)
    return items


def worker_status() -> Dict[str, Any]:
    """
    Return basic worker/queue status.
    """
    alive = bool(WORKER_THREAD) and WORKER_THREAD.is_alive()  # type: ignore[union-attr]
    with _RUNTIME_LOCK:
        rt = _RUNTIME
    return {
        "worker_started": WORKER_STARTED,
        "worker_alive": alive,
        "queue_size": len(rt.queue) if rt is not None else 0,
        "pending_jobs": rt.queue.pending_ids() if rt is not None else [],
        "printer_type": rt.printer_type if rt is not None else None,
        "printer_open": rt.transport.is_open if rt is not None else False,
        "logo_loaded": bool(rt.logo_bytes) if rt is not None else False,
    }


__all__ = [
    "JOBS",
    "JOBS_MAX",
    "PrintQueue",
    "PrinterRuntime",
    "WORKER_STARTED",
    "WORKER_THREAD",
    "enqueue_job",
    "ensure_runtime",
    "ensure_worker",
    "get_job",
    "list_jobs",
    "next_tick",
    "print_job",
    "run_tick",
    "self_test_print",
    "set_runtime",
    "shutdown",
    "worker_status",
]
