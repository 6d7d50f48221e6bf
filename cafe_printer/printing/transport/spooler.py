"""
OS print spooler transport: pipes the raw buffer to `lp -d <printer> -o raw`.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Mapping
from typing import Any, List, Optional

from cafe_printer.core.config import get_setting
from cafe_printer.printing.transport.base import SpoolerError, Transport

logger = logging.getLogger(__name__)


class SpoolerTransport(Transport):
    name = "spooler"

    def __init__(self, printer_name: str, *, timeout: float = 30.0, command: str = "lp"):
        self.printer_name = printer_name
        self.timeout = timeout
        self.command = command

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]]) -> "SpoolerTransport":
        return cls(
            get_setting(config, "spooler_printer_name", str),
            timeout=get_setting(config, "spooler_timeout_seconds", float),
        )

    @property
    def is_open(self) -> bool:
        return True

    def describe(self) -> str:
        return f"spooler {self.command} -d {self.printer_name}"

    def open(self) -> None:
        if shutil.which(self.command) is None:
            raise SpoolerError(f"print command not found: {self.command}")

    def argv(self) -> List[str]:
        return [self.command, "-d", self.printer_name, "-o", "raw"]

    def write(self, data: bytes) -> None:
        try:
            proc = subprocess.run(
                self.argv(),
                input=data,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise SpoolerError(f"print command not found: {self.command}") from e
        except subprocess.TimeoutExpired as e:
            raise SpoolerError(f"print command timed out after {self.timeout:.0f}s") from e
        if proc.returncode != 0:
            stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
            raise SpoolerError(f"{self.command} exited with {proc.returncode}: {stderr}")
        stdout = (proc.stdout or b"").decode("utf-8", errors="replace").strip()
        logger.info("Spooled %d bytes to %s %s", len(data), self.printer_name, stdout)

    def close(self) -> None:
        return None


__all__ = ["SpoolerTransport"]
