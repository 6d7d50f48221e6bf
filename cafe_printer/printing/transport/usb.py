"""
USB bulk transport built on pyusb.

Discovery and interface selection are table driven:
- DEVICE_RULES decide whether an attached device is a printer candidate
  (first qualifying device wins)
- INTERFACE_PRIORITIES rank interfaces that expose a bulk-OUT endpoint;
  vendor-specific (255) first, other classes next, printer class (7) last,
  because the printer-class interface is often owned by the OS print system

Writes are split around every raster block so a GS v 0 header is never sent in
the same chunk run as unrelated bytes, then chunked at a fixed size.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Set, Tuple

import usb.core
import usb.util

from cafe_printer.core.config import get_setting
from cafe_printer.printing.encoder import find_raster_blocks
from cafe_printer.printing.transport.base import (
    ClaimFailed,
    NoDeviceFound,
    TransferError,
    Transport,
    chunked,
)

logger = logging.getLogger(__name__)

USB_CLASS_PRINTER = 7
USB_CLASS_VENDOR_SPECIFIC = 255

THERMAL_PRINTER_VENDORS = {
    0x04B8: "Epson",
    0x0456: "Analog Devices",
    0x0416: "Winbond Electronics",
    0x0519: "Star Micronics",
    0x0DD4: "Custom",
}

PRINTER_CLASS_HINT = (
    "Using a printer-class (7) interface; the OS print system may intercept it. "
    "If receipts come out blank, switch the printer to its built-in USB (raw ESC/POS) "
    "interface mode and remove it from the OS printer list."
)


def _interface_classes(device: Any) -> Set[int]:
    classes: Set[int] = set()
    try:
        for configuration in device:
            for interface in configuration:
                classes.add(int(interface.bInterfaceClass))
    except (usb.core.USBError, ValueError, NotImplementedError) as e:
        logger.debug("Cannot read descriptors of %04x:%04x: %s", device.idVendor, device.idProduct, e)
    return classes


DEVICE_RULES: Tuple[Tuple[Callable[[Any], bool], str], ...] = (
    (lambda dev: dev.idVendor in THERMAL_PRINTER_VENDORS, "known thermal printer vendor"),
    (
        lambda dev: bool(_interface_classes(dev) & {USB_CLASS_PRINTER, USB_CLASS_VENDOR_SPECIFIC}),
        "printer or vendor-specific interface",
    ),
)

# Lower rank is tried first; the first matching predicate assigns the rank.
INTERFACE_PRIORITIES: Tuple[Tuple[Callable[[Any], bool], int], ...] = (
    (lambda intf: intf.bInterfaceClass == USB_CLASS_VENDOR_SPECIFIC, 1),
    (lambda intf: intf.bInterfaceClass != USB_CLASS_PRINTER, 2),
    (lambda intf: intf.bInterfaceClass == USB_CLASS_PRINTER, 3),
)


@dataclass(frozen=True)
class InterfaceCandidate:
    interface: Any
    endpoint: Any
    priority: int

    @property
    def number(self) -> int:
        return int(self.interface.bInterfaceNumber)

    @property
    def interface_class(self) -> int:
        return int(self.interface.bInterfaceClass)


def is_bulk_out(endpoint: Any) -> bool:
    return (
        usb.util.endpoint_direction(endpoint.bEndpointAddress) == usb.util.ENDPOINT_OUT
        and usb.util.endpoint_type(endpoint.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK
    )


def bulk_out_endpoint(interface: Any) -> Optional[Any]:
    for endpoint in interface:
        if is_bulk_out(endpoint):
            return endpoint
    return None


def qualifies(device: Any) -> Optional[str]:
    """Return the reason a device looks like a printer, or None."""
    for predicate, reason in DEVICE_RULES:
        if predicate(device):
            return reason
    return None


def find_printer(devices: Iterable[Any]) -> Optional[Any]:
    for device in devices:
        reason = qualifies(device)
        if reason:
            logger.info("USB printer candidate %04x:%04x (%s)", device.idVendor, device.idProduct, reason)
            return device
    return None


def interface_priority(interface: Any) -> int:
    for predicate, priority in INTERFACE_PRIORITIES:
        if predicate(interface):
            return priority
    return len(INTERFACE_PRIORITIES) + 1


def rank_interfaces(configuration: Iterable[Any]) -> List[InterfaceCandidate]:
    """
    Every default-setting interface with a bulk-OUT endpoint, best candidate first.
    Ties keep interface-number order.
    """
    candidates: List[InterfaceCandidate] = []
    for interface in configuration:
        if getattr(interface, "bAlternateSetting", 0) != 0:
            continue
        endpoint = bulk_out_endpoint(interface)
        logger.info(
            "Interface %d: class %d, %s",
            interface.bInterfaceNumber,
            interface.bInterfaceClass,
            "bulk OUT 0x%02x" % endpoint.bEndpointAddress if endpoint is not None else "no bulk OUT",
        )
        if endpoint is None:
            continue
        candidates.append(InterfaceCandidate(interface, endpoint, interface_priority(interface)))
    candidates.sort(key=lambda c: (c.priority, c.number))
    return candidates


def split_raster_segments(data: bytes) -> List[bytes]:
    """
    Split a command buffer into the bytes around and inside each raster block.
    Empty segments are dropped; concatenating the result gives back data.
    """
    segments: List[bytes] = []
    pos = 0
    for start, end in find_raster_blocks(data):
        if start > pos:
            segments.append(data[pos:start])
        segments.append(data[start:end])
        pos = end
    if pos < len(data):
        segments.append(data[pos:])
    return segments


def _parse_usb_id(value: Any) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    return int(str(value), 16)


def _default_finder(vendor_id: Optional[int], product_id: Optional[int]) -> Callable[[], Iterable[Any]]:
    def _find() -> Iterable[Any]:
        criteria = {}
        if vendor_id is not None:
            criteria["idVendor"] = vendor_id
        if product_id is not None:
            criteria["idProduct"] = product_id
        return usb.core.find(find_all=True, **criteria) or []

    return _find


class UsbTransport(Transport):
    name = "usb"

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        finder: Optional[Callable[[], Iterable[Any]]] = None,
    ):
        self.chunk_size = get_setting(config, "usb_chunk_size", int)
        self.timeout_ms = get_setting(config, "usb_timeout_ms", int)
        self.settle_seconds = get_setting(config, "usb_settle_seconds", float)
        self.text_settle_seconds = get_setting(config, "usb_text_settle_seconds", float)
        self.chunk_delay_seconds = get_setting(config, "usb_chunk_delay_seconds", float)
        vendor = get_setting(config, "usb_vendor_id", _parse_usb_id)
        product = get_setting(config, "usb_product_id", _parse_usb_id)
        self._finder = finder or _default_finder(vendor, product)
        self._device: Any = None
        self._endpoint: Any = None
        self._interface_number: Optional[int] = None
        # Bumped by close(); a write started on an older handle must not touch a newer one
        self._generation = 0

    @property
    def is_open(self) -> bool:
        return self._device is not None and self._endpoint is not None

    def describe(self) -> str:
        if self._device is None:
            return "usb (closed)"
        return "usb %04x:%04x if%d ep 0x%02x" % (
            self._device.idVendor,
            self._device.idProduct,
            self._interface_number,
            self._endpoint.bEndpointAddress,
        )

    def _find_device(self) -> Any:
        try:
            device = find_printer(self._finder())
        except usb.core.NoBackendError as e:
            raise NoDeviceFound(f"no libusb backend available: {e}") from e
        except usb.core.USBError as e:
            raise NoDeviceFound(f"USB enumeration failed: {e}") from e
        if device is None:
            raise NoDeviceFound("No USB printer found")
        return device

    @staticmethod
    def _active_configuration(device: Any) -> Any:
        try:
            return device.get_active_configuration()
        except usb.core.USBError:
            device.set_configuration()
            return device.get_active_configuration()

    @staticmethod
    def _detach_kernel_driver(device: Any, number: int) -> None:
        try:
            if device.is_kernel_driver_active(number):
                logger.info("Detaching kernel driver from interface %d", number)
                device.detach_kernel_driver(number)
        except NotImplementedError:
            # libusb on macOS and Windows cannot query kernel drivers
            pass

    @staticmethod
    def _release(device: Any, number: Optional[int]) -> None:
        if number is None:
            return
        try:
            usb.util.release_interface(device, number)
        except (usb.core.USBError, NotImplementedError, ValueError) as e:
            logger.debug("Release of interface %s failed: %s", number, e)

    @staticmethod
    def _dispose(device: Any) -> None:
        try:
            usb.util.dispose_resources(device)
        except (usb.core.USBError, NotImplementedError, ValueError) as e:
            logger.debug("Dispose failed: %s", e)

    def open(self) -> None:
        """
        Find the printer, then claim interfaces in priority order until one succeeds.

        Raises:
            NoDeviceFound when no attached device qualifies.
            ClaimFailed when every candidate interface was refused.
        """
        if self.is_open:
            return
        device = self._find_device()
        try:
            configuration = self._active_configuration(device)
        except usb.core.USBError as e:
            self._dispose(device)
            raise ClaimFailed(f"cannot configure device: {e}") from e

        candidates = rank_interfaces(configuration)
        logger.info("Found %d candidate interface(s), trying in priority order", len(candidates))
        for candidate in candidates:
            number = candidate.number
            logger.info("Attempting to claim interface %d (class %d)", number, candidate.interface_class)
            try:
                self._detach_kernel_driver(device, number)
                usb.util.claim_interface(device, number)
            except usb.core.USBError as e:
                logger.warning("Failed to claim interface %d: %s", number, e)
                self._release(device, number)
                continue
            self._device = device
            self._interface_number = number
            self._endpoint = candidate.endpoint
            logger.info("USB printer connected: %s", self.describe())
            if candidate.interface_class == USB_CLASS_PRINTER:
                logger.warning(PRINTER_CLASS_HINT)
            return

        self._dispose(device)
        raise ClaimFailed(f"no usable interface among {len(candidates)} candidate(s)")

    def _transfer(self, endpoint: Any, chunk: bytes) -> None:
        try:
            written = endpoint.write(chunk, self.timeout_ms)
        except usb.core.USBError as e:
            raise TransferError(f"bulk transfer of {len(chunk)} bytes failed: {e}") from e
        if written is not None and written != len(chunk):
            raise TransferError(f"short bulk transfer: {written} of {len(chunk)} bytes")

    def write(self, data: bytes) -> None:
        """
        Send data as fixed-size chunks, segment by segment, then wait for the
        print head to finish since the device sends no completion signal.

        A failed transfer closes the handle so the next job reopens the device.
        If the handle is closed while the write is running (a timed-out job),
        the write stops at the next chunk and leaves any newer handle alone.
        """
        if not self.is_open:
            raise TransferError("USB transport is not open")
        endpoint, generation = self._endpoint, self._generation
        segments = split_raster_segments(data)
        has_raster = bool(find_raster_blocks(data))
        logger.info("USB write: %d bytes in %d segment(s)", len(data), len(segments))
        started = time.monotonic()
        try:
            for segment in segments:
                for chunk in chunked(segment, self.chunk_size):
                    if self._generation != generation:
                        raise TransferError("USB handle closed during write")
                    self._transfer(endpoint, chunk)
                    if not has_raster and self.chunk_delay_seconds > 0:
                        time.sleep(self.chunk_delay_seconds)
        except TransferError:
            if self._generation == generation:
                self.close()
            raise
        logger.info("Transfer completed in %d ms", int((time.monotonic() - started) * 1000))
        time.sleep(self.settle_seconds if has_raster else self.text_settle_seconds)

    def close(self) -> None:
        device, number = self._device, self._interface_number
        self._generation += 1
        self._device = None
        self._endpoint = None
        self._interface_number = None
        if device is None:
            return
        self._release(device, number)
        self._dispose(device)
        logger.info("USB printer released")


__all__ = [
    "DEVICE_RULES",
    "INTERFACE_PRIORITIES",
    "InterfaceCandidate",
    "THERMAL_PRINTER_VENDORS",
    "USB_CLASS_PRINTER",
    "USB_CLASS_VENDOR_SPECIFIC",
    "UsbTransport",
    "bulk_out_endpoint",
    "find_printer",
    "interface_priority",
    "qualifies",
    "rank_interfaces",
    "split_raster_segments",
]
