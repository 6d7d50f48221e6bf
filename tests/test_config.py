import json

from cafe_printer.core.assets import is_supported_image, load_logo_bytes, resolve_logo_path
from cafe_printer.core.config import DEFAULT_CONFIG, env_overrides, get_setting, load_config, save_config
from cafe_printer.printing.transport.usb import _parse_usb_id


def test_missing_file_yields_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "nope.json"), use_env=False)
    assert cfg == DEFAULT_CONFIG
    assert cfg is not DEFAULT_CONFIG


def test_file_values_merge_over_defaults(tmp_path):
    path = tmp_path / "cfg.json"
    save_config({"printer_type": "network", "network_ip": "10.1.1.9"}, path=str(path))
    cfg = load_config(str(path), use_env=False)
    assert cfg["printer_type"] == "network"
    assert cfg["network_ip"] == "10.1.1.9"
    assert cfg["dot_width"] == 576
    assert json.loads(path.read_text())["network_ip"] == "10.1.1.9"
    assert not (tmp_path / "cfg.json.tmp").exists()


def test_env_overrides_win_and_are_coerced(tmp_path, monkeypatch):
    path = tmp_path / "cfg.json"
    save_config({"queue_interval_seconds": 3}, path=str(path))
    monkeypatch.setenv("CAFEPRINTER_QUEUE_INTERVAL_SECONDS", "1.5")
    monkeypatch.setenv("CAFEPRINTER_CUT", "false")
    monkeypatch.setenv("CAFEPRINTER_USB_CHUNK_SIZE", "0x40")
    monkeypatch.setenv("CAFEPRINTER_CONTRAST_GAMMA", "1.4")
    monkeypatch.setenv("CAFEPRINTER_DOT_WIDTH", "wide")
    cfg = load_config(str(path))
    assert cfg["queue_interval_seconds"] == 1.5
    assert cfg["cut"] is False
    assert cfg["usb_chunk_size"] == 64
    assert cfg["contrast_gamma"] == 1.4
    assert cfg["dot_width"] == 576


def test_config_path_env(tmp_path, monkeypatch):
    path = tmp_path / "elsewhere.json"
    save_config({"feed_lines": 2}, path=str(path))
    monkeypatch.setenv("CAFEPRINTER_CONFIG_PATH", str(path))
    assert load_config(use_env=False)["feed_lines"] == 2


def test_get_setting_falls_back_on_bad_values():
    assert get_setting({"dot_width": "384"}, "dot_width", int) == 384
    assert get_setting({"dot_width": "wide"}, "dot_width", int) == 576
    assert get_setting({}, "feed_lines", int) == 6
    assert get_setting(None, "contrast_gamma", float) is None


def test_logo_resolution(tmp_path, monkeypatch):
    monkeypatch.setenv("CAFEPRINTER_ASSETS_PATH", str(tmp_path))
    assert resolve_logo_path({}) is None
    assert load_logo_bytes({}) is None
    (tmp_path / "logo.png").write_bytes(b"png")
    assert resolve_logo_path({}) == tmp_path / "logo.png"
    assert load_logo_bytes({}) == b"png"
    other = tmp_path / "brand.png"
    other.write_bytes(b"brand")
    assert load_logo_bytes({"logo_path": str(other)}) == b"brand"
    assert resolve_logo_path({"logo_path": str(tmp_path / "missing.png")}) is None


def test_supported_image_by_mime_or_extension():
    assert is_supported_image("IMG_0001.HEIC", "image/heic")
    assert is_supported_image("photo.JPG")
    assert not is_supported_image("notes.txt", "text/plain")


def test_usb_ids_from_env_stay_hex_strings(tmp_path, monkeypatch):
    found = env_overrides({"CAFEPRINTER_USB_VENDOR_ID": "0416", "CAFEPRINTER_USB_PRODUCT_ID": "5011"})
    assert found == {"usb_vendor_id": "0416", "usb_product_id": "5011"}

    path = tmp_path / "cfg.json"
    save_config({"usb_vendor_id": "0416"}, path=str(path))
    from_file = load_config(str(path), use_env=False)
    monkeypatch.setenv("CAFEPRINTER_USB_VENDOR_ID", "0416")
    from_env = load_config(str(tmp_path / "none.json"))
    assert get_setting(from_env, "usb_vendor_id", _parse_usb_id) == 0x0416
    assert get_setting(from_env, "usb_vendor_id", _parse_usb_id) == get_setting(
        from_file, "usb_vendor_id", _parse_usb_id
    )


def test_logo_path_env_is_kept_as_given():
    assert env_overrides({"CAFEPRINTER_LOGO_PATH": "/srv/logo.png"}) == {"logo_path": "/srv/logo.png"}
