"""
Raw TCP (port 9100) transport on python-escpos's Network printer.

One persistent connection with keep-alive. write() connects on demand and, when
the peer resets the connection mid-write, reconnects and retries exactly once.
"""

from __future__ import annotations

import errno
import logging
import socket
from collections.abc import Mapping
from typing import Any, Callable, Optional

from escpos.exceptions import DeviceNotFoundError
from escpos.printer import Network

from cafe_printer.core.config import get_setting
from cafe_printer.printing.transport.base import ConnectError, Transport, WriteError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9100
KEEPALIVE_IDLE_SECONDS = 30

RESET_ERRNOS = frozenset({errno.EPIPE, errno.ECONNRESET, errno.ENOTCONN, errno.ECONNABORTED})

# Called as factory(host, port, timeout); returns an unopened escpos Network printer
PrinterFactory = Callable[[str, int, float], Any]


def is_reset_error(exc: BaseException) -> bool:
    """True for connection-reset class failures that warrant one reconnect."""
    if isinstance(exc, (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)):
        return True
    return isinstance(exc, OSError) and exc.errno in RESET_ERRNOS


def _network_printer(host: str, port: int, timeout: float) -> Network:
    return Network(host, port=port, timeout=timeout)


def _close_quietly(printer: Any) -> None:
    try:
        printer.close()
    except OSError as e:
        logger.debug("Printer socket close failed: %s", e)


def _enable_keepalive(sock: Any) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    if hasattr(socket, "TCP_KEEPIDLE"):
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, KEEPALIVE_IDLE_SECONDS)
        except OSError as e:
            logger.debug("TCP_KEEPIDLE not applied: %s", e)


class NetworkTransport(Transport):
    name = "network"

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        timeout: float = 10.0,
        drain_timeout: float = 5.0,
        printer_factory: Optional[PrinterFactory] = None,
    ):
        if not host:
            raise ValueError("network transport needs a host")
        self.host = host
        self.port = int(port)
        self.timeout = float(timeout)
        self.drain_timeout = float(drain_timeout)
        self._printer_factory: PrinterFactory = printer_factory or _network_printer
        self._printer: Any = None
        self.connected = False

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]], **kwargs: Any) -> "NetworkTransport":
        return cls(
            get_setting(config, "network_ip", str),
            get_setting(config, "network_port", int),
            timeout=get_setting(config, "network_timeout_seconds", float),
            drain_timeout=get_setting(config, "network_drain_timeout_seconds", float),
            **kwargs,
        )

    @property
    def is_open(self) -> bool:
        return self.connected and self._printer is not None

    def describe(self) -> str:
        return f"network {self.host}:{self.port}"

    def connect(self) -> None:
        """
        Open the printer connection if not already connected.

        Raises:
            ConnectError when the printer cannot be reached within the timeout.
        """
        if self.is_open:
            return
        self._drop()
        printer = self._printer_factory(self.host, self.port, self.timeout)
        try:
            printer.open()
            _enable_keepalive(printer.device)
        except (DeviceNotFoundError, OSError) as e:
            _close_quietly(printer)
            raise ConnectError(f"cannot connect to {self.host}:{self.port}: {e}") from e
        self._printer = printer
        self.connected = True
        logger.info("Network printer connected (%s:%d)", self.host, self.port)

    open = connect

    def _send(self, data: bytes) -> None:
        # sendall returns once the kernel has accepted every byte; the timeout bounds a stalled peer
        sock = self._printer.device
        sock.settimeout(self.drain_timeout)
        try:
            self._printer._raw(data)
        finally:
            sock.settimeout(self.timeout)

    def write(self, data: bytes) -> None:
        """
        Raises:
            ConnectError when the initial connect fails.
            WriteError when the write fails, or fails again after one reconnect.
        """
        if not self.is_open:
            logger.info("Network connection not open, connecting")
            self.connect()
        try:
            self._send(data)
            return
        except OSError as e:
            self._drop()
            if not is_reset_error(e):
                raise WriteError(f"write to {self.host}:{self.port} failed: {e}") from e
            logger.warning("Connection error (%s), reconnecting and retrying once", e)

        try:
            self.connect()
            self._send(data)
        except ConnectError as e:
            raise WriteError(f"reconnect to {self.host}:{self.port} failed: {e}") from e
        except OSError as e:
            self._drop()
            raise WriteError(f"write to {self.host}:{self.port} failed after reconnect: {e}") from e
        logger.info("Reconnected and retried write successfully")

    def _drop(self) -> None:
        printer, self._printer = self._printer, None
        self.connected = False
        if printer is None:
            return
        _close_quietly(printer)

    def close(self) -> None:
        was_open = self.is_open
        self._drop()
        if was_open:
            logger.info("Network printer connection closed")


__all__ = ["DEFAULT_PORT", "NetworkTransport", "RESET_ERRNOS", "is_reset_error"]
