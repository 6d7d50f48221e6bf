"""
Config utilities for Cafe Printer.

Responsibilities:
- Resolve the config path with environment and XDG support
- Provide defaults for every printer, raster, and queue tunable
- Merge the JSON file and CAFEPRINTER_<KEY> environment overrides over the defaults
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENV_PREFIX = "CAFEPRINTER_"

# Kept verbatim from the environment; USB ids are hex strings such as "0416"
STRING_KEYS = frozenset({"usb_vendor_id", "usb_product_id", "logo_path"})

DEFAULT_CONFIG: Dict[str, Any] = {
    # Transport selection: "usb", "network" or "spooler". No automatic fallback between them.
    "printer_type": "usb",
    "network_ip": "",
    "network_port": 9100,
    "network_timeout_seconds": 10.0,
    "network_drain_timeout_seconds": 5.0,
    "usb_vendor_id": None,
    "usb_product_id": None,
    "usb_chunk_size": 64,
    "usb_timeout_ms": 5000,
    "usb_settle_seconds": 1.0,
    "usb_text_settle_seconds": 0.1,
    "usb_chunk_delay_seconds": 0.005,
    "spooler_printer_name": "EPSON_TM_T20II",
    "spooler_timeout_seconds": 30.0,
    # Raster
    "dot_width": 576,
    "dither_threshold": 128,
    "contrast_gamma": None,
    "text_encoding": "cp437",
    # Logo
    "logo_path": None,
    "logo_width_dots": 576,
    "logo_offset_dots": 0,
    "logo_with_images_only": True,
    # Queue and bounds
    "queue_interval_seconds": 8.0,
    "raster_timeout_seconds": 20.0,
    "write_timeout_seconds": 60.0,
    # Trailer
    "feed_lines": 6,
    "cut": True,
    "self_test_text": "PRINTER READY - cafe mode activated",
}


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/cafeprinter/config.json
    2) ~/.config/cafeprinter/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "cafeprinter" / "config.json")
    return str(Path.home() / ".config" / "cafeprinter" / "config.json")


def get_config_path() -> str:
    """
    Return the config path honoring CAFEPRINTER_CONFIG_PATH override.
    """
    return os.environ.get("CAFEPRINTER_CONFIG_PATH", default_config_path())


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw, 0)
    if isinstance(default, float):
        return float(raw)
    if default is None:
        # Optional numeric tunables such as contrast_gamma
        if not raw.strip():
            return None
        try:
            return float(raw)
        except ValueError:
            return raw
    return raw


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Collect CAFEPRINTER_<KEY> overrides for known keys, coerced to the default's type.
    Values that fail to coerce are logged and skipped.
    """
    env = os.environ if environ is None else environ
    found: Dict[str, Any] = {}
    for key, default in DEFAULT_CONFIG.items():
        raw = env.get(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        try:
            found[key] = raw if key in STRING_KEYS else _coerce(raw, default)
        except ValueError:
            logger.warning("Ignoring invalid value for %s%s: %r", ENV_PREFIX, key.upper(), raw)
    return found


def load_config(path: Optional[str] = None, *, use_env: bool = True) -> Dict[str, Any]:
    """
    Load the JSON config merged over DEFAULT_CONFIG.

    A missing file yields the defaults. Environment overrides win over the file.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg: Dict[str, Any] = dict(DEFAULT_CONFIG)
    cfg_path = Path(path or get_config_path())
    if cfg_path.exists():
        with cfg_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            cfg.update(data)
        else:
            logger.warning("Config at %s is not a JSON object; using defaults", cfg_path)
    if use_env:
        cfg.update(env_overrides())
    return cfg


def get_setting(config: Optional[Mapping[str, Any]], key: str, cast: Callable[[Any], T]) -> T:
    """
    Read config[key] through cast, falling back to DEFAULT_CONFIG when missing or malformed.
    """
    default = DEFAULT_CONFIG[key]
    value = (config or {}).get(key, default)
    if value is None:
        return value  # type: ignore[return-value]
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning("Invalid config value for %s: %r; using %r", key, value, default)
        return default if default is None else cast(default)


def save_config(data: Dict[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.

    Writes atomically by using a temporary file and os.replace().
    Raises OSError on I/O failures.
    """
    cfg_path = Path(path or get_config_path())
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(cfg_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, cfg_path)


__all__ = [
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "STRING_KEYS",
    "default_config_path",
    "env_overrides",
    "get_config_path",
    "get_setting",
    "load_config",
    "save_config",
]
