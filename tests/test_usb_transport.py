from typing import Any, List

import pytest
import usb.core
import usb.util

from cafe_printer.printing.encoder import CommandEncoder
from cafe_printer.printing.raster import RasterBitmap
from cafe_printer.printing.transport import ClaimFailed, NoDeviceFound, TransferError
from cafe_printer.printing.transport import usb as usb_transport
from cafe_printer.printing.transport.usb import (
    UsbTransport,
    interface_priority,
    rank_interfaces,
    split_raster_segments,
)


class FakeEndpoint:
    def __init__(self, address: int = 0x01, attributes: int = usb.util.ENDPOINT_TYPE_BULK):
        self.bEndpointAddress = address
        self.bmAttributes = attributes
        self.writes: List[bytes] = []
        self.fail_after = None
        self.on_write = None

    def write(self, data, timeout=None):
        if self.on_write is not None:
            self.on_write()
        if self.fail_after is not None and len(self.writes) >= self.fail_after:
            raise usb.core.USBError("pipe error")
        self.writes.append(bytes(data))
        return len(data)


class FakeInterface:
    def __init__(self, number: int, cls: int, endpoints=None, alt: int = 0):
        self.bInterfaceNumber = number
        self.bInterfaceClass = cls
        self.bAlternateSetting = alt
        self.endpoints = endpoints if endpoints is not None else [FakeEndpoint(0x81, 2), FakeEndpoint(0x01 + number)]

    def __iter__(self):
        return iter(self.endpoints)


class FakeDevice:
    def __init__(self, interfaces, vendor: int = 0x04B8, product: int = 0x0E28):
        self.idVendor = vendor
        self.idProduct = product
        self.interfaces = interfaces
        self.detached: List[int] = []

    def __iter__(self):
        return iter([self.interfaces])

    def get_active_configuration(self):
        return self.interfaces

    def set_configuration(self):
        return None

    def is_kernel_driver_active(self, number):
        return True

    def detach_kernel_driver(self, number):
        self.detached.append(number)


@pytest.fixture
def usb_calls(monkeypatch):
    calls: dict = {"claimed": [], "released": [], "disposed": 0, "refuse": set(), "sleeps": []}

    def _claim(device, number):
        if number in calls["refuse"]:
            raise usb.core.USBError("Resource busy")
        calls["claimed"].append(number)

    def _release(device, number):
        calls["released"].append(number)

    def _dispose(device):
        calls["disposed"] += 1

    monkeypatch.setattr(usb.util, "claim_interface", _claim)
    monkeypatch.setattr(usb.util, "release_interface", _release)
    monkeypatch.setattr(usb.util, "dispose_resources", _dispose)
    monkeypatch.setattr(usb_transport.time, "sleep", lambda s: calls["sleeps"].append(s))
    return calls


def _transport(devices, **cfg: Any) -> UsbTransport:
    return UsbTransport(cfg, finder=lambda: list(devices))


def test_vendor_specific_claimed_before_printer_class(usb_calls):
    printer = FakeInterface(0, 7)
    vendor = FakeInterface(1, 255)
    t = _transport([FakeDevice([printer, vendor])])
    t.open()
    assert usb_calls["claimed"] == [1]
    assert t.is_open
    assert "if1" in t.describe()


def test_priority_order_for_mixed_classes():
    ranked = rank_interfaces([FakeInterface(0, 7), FakeInterface(1, 3), FakeInterface(2, 255)])
    assert [c.number for c in ranked] == [2, 1, 0]
    assert interface_priority(FakeInterface(5, 7)) == 3


def test_interfaces_without_bulk_out_or_alternate_are_skipped():
    no_out = FakeInterface(0, 255, endpoints=[FakeEndpoint(0x81, 2)])
    interrupt_only = FakeInterface(1, 255, endpoints=[FakeEndpoint(0x02, usb.util.ENDPOINT_TYPE_INTR)])
    alternate = FakeInterface(2, 255, alt=1)
    assert rank_interfaces([no_out, interrupt_only, alternate]) == []


def test_claim_falls_back_to_next_candidate(usb_calls):
    usb_calls["refuse"].add(1)
    device = FakeDevice([FakeInterface(0, 7), FakeInterface(1, 255)])
    t = _transport([device])
    t.open()
    assert usb_calls["claimed"] == [0]
    assert 1 in usb_calls["released"]
    assert device.detached == [1, 0]


def test_all_claims_refused_raises(usb_calls):
    usb_calls["refuse"].update({0, 1})
    t = _transport([FakeDevice([FakeInterface(0, 7), FakeInterface(1, 255)])])
    with pytest.raises(ClaimFailed):
        t.open()
    assert not t.is_open
    assert usb_calls["disposed"] == 1


def test_no_qualifying_device(usb_calls):
    mouse = FakeDevice([FakeInterface(0, 3)], vendor=0x046D)
    with pytest.raises(NoDeviceFound):
        _transport([mouse]).open()
    with pytest.raises(NoDeviceFound):
        _transport([]).open()


def test_unknown_vendor_with_printer_class_qualifies(usb_calls):
    t = _transport([FakeDevice([FakeInterface(0, 7)], vendor=0x1234)])
    t.open()
    assert usb_calls["claimed"] == [0]


def test_write_chunks_text_with_delay(usb_calls):
    device = FakeDevice([FakeInterface(0, 255)])
    t = _transport([device], usb_chunk_size=4)
    t.open()
    t.write(b"0123456789")
    endpoint = device.interfaces[0].endpoints[1]
    assert endpoint.writes == [b"0123", b"4567", b"89"]
    assert usb_calls["sleeps"] == [0.005, 0.005, 0.005, 0.1]


def test_write_splits_around_raster_and_settles(usb_calls):
    device = FakeDevice([FakeInterface(0, 255)])
    t = _transport([device], usb_chunk_size=64)
    t.open()
    bitmap = RasterBitmap(width_dots=16, height_dots=2, packed_bits=b"\xff" * 4)
    data = CommandEncoder().append_text("AB").append_bitmap(bitmap).append_text("CD").build()
    t.write(data)
    endpoint = device.interfaces[0].endpoints[1]
    assert endpoint.writes == [b"AB", b"\x1dv0\x00\x02\x00\x02\x00" + b"\xff" * 4, b"CD"]
    assert usb_calls["sleeps"] == [1.0]


def test_split_raster_segments_roundtrip():
    bitmap = RasterBitmap(width_dots=8, height_dots=1, packed_bits=b"\x01")
    data = CommandEncoder().append_bitmap(bitmap).append_text("x").append_bitmap(bitmap).build()
    segments = split_raster_segments(data)
    assert len(segments) == 3
    assert b"".join(segments) == data


def test_transfer_failure_closes_handle(usb_calls):
    device = FakeDevice([FakeInterface(0, 255)])
    device.interfaces[0].endpoints[1].fail_after = 1
    t = _transport([device], usb_chunk_size=2)
    t.open()
    with pytest.raises(TransferError):
        t.write(b"abcdef")
    assert not t.is_open
    assert usb_calls["released"] == [0]


def test_write_requires_open():
    with pytest.raises(TransferError):
        _transport([]).write(b"x")


def test_close_is_idempotent(usb_calls):
    t = _transport([FakeDevice([FakeInterface(0, 255)])])
    t.open()
    t.close()
    t.close()
    assert usb_calls["released"] == [0]
    assert usb_calls["disposed"] == 1


def test_close_during_write_stops_at_next_chunk(usb_calls):
    device = FakeDevice([FakeInterface(0, 255)])
    endpoint = device.interfaces[0].endpoints[1]
    t = _transport([device], usb_chunk_size=2)
    t.open()
    endpoint.on_write = t.close
    with pytest.raises(TransferError, match="closed during write"):
        t.write(b"abcdef")
    assert endpoint.writes == [b"ab"]
    assert usb_calls["released"] == [0]
    assert usb_calls["disposed"] == 1


def test_stale_write_leaves_reopened_handle_alone(usb_calls):
    device = FakeDevice([FakeInterface(0, 255)])
    endpoint = device.interfaces[0].endpoints[1]
    t = _transport([device], usb_chunk_size=2)
    t.open()

    def _reopen():
        endpoint.on_write = None
        t.close()
        t.open()

    endpoint.on_write = _reopen
    with pytest.raises(TransferError):
        t.write(b"abcdef")
    assert endpoint.writes == [b"ab"]
    assert t.is_open
    assert usb_calls["claimed"] == [0, 0]
    assert usb_calls["released"] == [0]
    assert usb_calls["sleeps"] == []
    t.write(b"gh")
    assert endpoint.writes == [b"ab", b"gh"]
