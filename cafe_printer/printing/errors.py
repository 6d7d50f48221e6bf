"""
Error taxonomy for the print pipeline and a bounded-call helper.

Raster and transport modules raise subclasses of PrinterError; the worker
catches them at the job boundary.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PrinterError(Exception):
    """Base class for every failure raised by the print pipeline."""


class JobTimeout(PrinterError):
    """A pipeline stage exceeded its time bound and was abandoned."""

    def __init__(self, stage: str, seconds: float):
        super().__init__(f"{stage} exceeded {seconds:.1f}s")
        self.stage = stage
        self.seconds = seconds


def call_with_timeout(fn: Callable[[], T], timeout: Optional[float], stage: str) -> T:
    """
    Run fn on a helper thread and wait at most `timeout` seconds for it.

    Exceptions from fn propagate unchanged. On timeout JobTimeout is raised and
    the helper thread is left to finish on its own; Python threads cannot be killed.
    A timeout of None or <= 0 runs fn inline.
    """
    if not timeout or timeout <= 0:
        return fn()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cafe-printer-{stage}")
    try:
        future = pool.submit(fn)
        # fn may itself raise the builtin TimeoutError, so poll with wait()
        done, _ = wait([future], timeout=timeout)
        if not done:
            logger.error("Stage %s abandoned after %.1fs", stage, timeout)
            raise JobTimeout(stage, timeout)
        return future.result()
    finally:
        pool.shutdown(wait=False)


__all__ = ["JobTimeout", "PrinterError", "call_with_timeout"]
