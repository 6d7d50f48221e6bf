"""
Transports: interchangeable byte sinks for the encoded command buffer.

- usb: pyusb bulk-OUT transport with interface negotiation
- network: raw TCP 9100 transport with one-shot reconnect
- spooler: pipes the buffer to the OS print command
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from cafe_printer.core.config import get_setting

from .base import (
    ClaimFailed,
    ConnectError,
    NoDeviceFound,
    SpoolerError,
    TransferError,
    Transport,
    TransportError,
    WriteError,
)


def create_transport(config: Optional[Mapping[str, Any]] = None) -> Transport:
    """
    Build (but do not open) the transport selected by config["printer_type"].
    There is no automatic fallback from one type to another.
    """
    ptype = get_setting(config, "printer_type", str).lower()
    if ptype == "usb":
        from .usb import UsbTransport

        return UsbTransport(config)
    if ptype == "network":
        from .network import NetworkTransport

        return NetworkTransport.from_config(config)
    if ptype == "spooler":
        from .spooler import SpoolerTransport

        return SpoolerTransport.from_config(config)
    raise ValueError(f"Unsupported printer type: {ptype}")


__all__ = [
    "ClaimFailed",
    "ConnectError",
    "NoDeviceFound",
    "SpoolerError",
    "TransferError",
    "Transport",
    "TransportError",
    "WriteError",
    "create_transport",
]
