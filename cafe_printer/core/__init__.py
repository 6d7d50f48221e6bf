"""
Core utilities for Cafe Printer.

This package groups non-Flask helpers used across the app:
- config: config path, defaults, JSON load/save, environment overrides
- logging: request/job aware logging filters/formatters and root logger config
- assets: logo discovery and upload type checks

Exports are explicit to keep static analyzers (e.g., Pyright) happy.
"""

from .assets import (
    IMAGE_EXTS,
    LOGO_FILENAME,
    get_assets_dir,
    is_supported_image,
    load_logo_bytes,
    resolve_logo_path,
)
from .config import (
    DEFAULT_CONFIG,
    default_config_path,
    env_overrides,
    get_config_path,
    get_setting,
    load_config,
    save_config,
)
from .logging import (
    JsonFormatter,
    RequestIdFilter,
    configure_logging,
    job_context,
)

__all__ = [
    # config
    "DEFAULT_CONFIG",
    "default_config_path",
    "env_overrides",
    "get_config_path",
    "get_setting",
    "load_config",
    "save_config",
    # logging
    "configure_logging",
    "job_context",
    "RequestIdFilter",
    "JsonFormatter",
    # assets
    "IMAGE_EXTS",
    "LOGO_FILENAME",
    "get_assets_dir",
    "is_supported_image",
    "load_logo_bytes",
    "resolve_logo_path",
]
