"""
Transport interface and error taxonomy.

A transport is a byte sink with an open/close lifecycle. The worker is the only
caller, so implementations need no locking of their own.
"""

from __future__ import annotations

import abc
from typing import Iterator

from cafe_printer.printing.errors import PrinterError


class TransportError(PrinterError):
    """Base class for device and connection failures."""


class NoDeviceFound(TransportError):
    """No attached USB device looks like a receipt printer."""


class ClaimFailed(TransportError):
    """Every candidate USB interface refused to be claimed or had no bulk-OUT endpoint."""


class TransferError(TransportError):
    """A USB bulk transfer failed or was short."""


class ConnectError(TransportError):
    """The TCP connection to the printer could not be established."""


class WriteError(TransportError):
    """Writing to the TCP printer failed, including after one reconnect."""


class SpoolerError(TransportError):
    """The OS print command was missing, failed, or timed out."""


class Transport(abc.ABC):
    name = "transport"

    @abc.abstractmethod
    def open(self) -> None:
        """Acquire the device. Calling open on an open transport is a no-op."""

    @abc.abstractmethod
    def write(self, data: bytes) -> None:
        """Send the whole buffer, returning once the device has been handed every byte."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the device. Idempotent; close-time errors are logged, not raised."""

    @property
    @abc.abstractmethod
    def is_open(self) -> bool: ...

    def ensure_open(self) -> None:
        if not self.is_open:
            self.open()

    def describe(self) -> str:
        return self.name


def chunked(data: bytes, size: int) -> Iterator[bytes]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for i in range(0, len(data), size):
        yield data[i : i + size]


__all__ = [
    "ClaimFailed",
    "ConnectError",
    "NoDeviceFound",
    "SpoolerError",
    "TransferError",
    "Transport",
    "TransportError",
    "WriteError",
    "chunked",
]
