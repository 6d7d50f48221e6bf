import subprocess

import pytest

from cafe_printer.printing.transport import SpoolerError, create_transport
from cafe_printer.printing.transport import spooler as spooler_mod
from cafe_printer.printing.transport.spooler import SpoolerTransport


def test_write_pipes_raw_buffer_to_lp(monkeypatch):
    captured = {}

    def _run(argv, **kwargs):
        captured["argv"] = argv
        captured.update(kwargs)
        return subprocess.CompletedProcess(argv, 0, stdout=b"request id is P-1", stderr=b"")

    monkeypatch.setattr(spooler_mod.subprocess, "run", _run)
    SpoolerTransport("EPSON_TM_T20II", timeout=7).write(b"\x1b@hi")
    assert captured["argv"] == ["lp", "-d", "EPSON_TM_T20II", "-o", "raw"]
    assert captured["input"] == b"\x1b@hi"
    assert captured["timeout"] == 7


def test_nonzero_exit_raises(monkeypatch):
    monkeypatch.setattr(
        spooler_mod.subprocess,
        "run",
        lambda argv, **kw: subprocess.CompletedProcess(argv, 1, stdout=b"", stderr=b"lp: printer not found"),
    )
    with pytest.raises(SpoolerError, match="printer not found"):
        SpoolerTransport("missing").write(b"x")


def test_timeout_raises(monkeypatch):
    def _run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

    monkeypatch.setattr(spooler_mod.subprocess, "run", _run)
    with pytest.raises(SpoolerError, match="timed out"):
        SpoolerTransport("p", timeout=1).write(b"x")


def test_missing_command(monkeypatch):
    monkeypatch.setattr(spooler_mod.shutil, "which", lambda cmd: None)
    with pytest.raises(SpoolerError):
        SpoolerTransport("p").open()


def test_factory_uses_configured_queue_name():
    t = create_transport({"printer_type": "spooler", "spooler_printer_name": "Receipt"})
    assert isinstance(t, SpoolerTransport)
    assert t.argv()[2] == "Receipt"


def test_factory_rejects_unknown_type():
    with pytest.raises(ValueError):
        create_transport({"printer_type": "serial"})
