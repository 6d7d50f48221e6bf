"""
Asset helpers for Cafe Printer.

Responsibilities:
- Locate the optional receipt logo (config override or the repository's assets/logo.png)
- Load the logo bytes once at startup
- Basic image type helpers for upload validation

These functions are intentionally independent of Flask so they can be used
from both web and worker contexts.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

IMAGE_EXTS: List[str] = [".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tif", ".tiff"]
LOGO_FILENAME = "logo.png"


def _repo_root() -> Path:
    """
    Return the repository root directory (project root).

    It walks up from this file looking for a directory that contains 'assets'.
    Falls back to the grandparent heuristic when not found.
    """
    current = Path(__file__).resolve()
    for parent in [current.parent, *current.parents]:
        if (parent / "assets").is_dir():
            return parent
    # Source layout: <repo>/cafe_printer/core/assets.py
    try:
        return current.parents[2]
    except IndexError:
        return current.parent


def get_assets_dir() -> Path:
    """
    Absolute path to the assets directory, honoring CAFEPRINTER_ASSETS_PATH.
    """
    override = os.environ.get("CAFEPRINTER_ASSETS_PATH")
    if override:
        return Path(override)
    return _repo_root() / "assets"


def is_supported_image(filename: str, mime_type: Optional[str] = None) -> bool:
    """
    True if the upload looks like an image, by MIME type or by extension.
    """
    if mime_type and mime_type.lower().startswith("image/"):
        return True
    ext = os.path.splitext(filename or "")[1].lower()
    return ext in IMAGE_EXTS


def resolve_logo_path(config: Optional[Mapping[str, Any]] = None) -> Optional[Path]:
    """
    Resolve the logo file: config["logo_path"] when set, else assets/logo.png.
    Returns None when no file exists.
    """
    configured = (config or {}).get("logo_path")
    if isinstance(configured, str) and configured.strip():
        candidate = Path(configured.strip()).expanduser()
        if candidate.is_file():
            return candidate
        logger.warning("Configured logo_path does not exist: %s", candidate)
        return None
    candidate = get_assets_dir() / LOGO_FILENAME
    return candidate if candidate.is_file() else None


def load_logo_bytes(config: Optional[Mapping[str, Any]] = None) -> Optional[bytes]:
    """
    Read the logo once. Missing or unreadable logos are not an error; the receipt is printed without one.
    """
    path = resolve_logo_path(config)
    if path is None:
        logger.info("No logo found (optional); place %s in %s to add one", LOGO_FILENAME, get_assets_dir())
        return None
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.warning("Failed to load logo from %s: %s", path, e)
        return None
    logger.info("Logo loaded from %s (%d bytes)", path, len(data))
    return data


__all__ = [
    "IMAGE_EXTS",
    "LOGO_FILENAME",
    "get_assets_dir",
    "is_supported_image",
    "load_logo_bytes",
    "resolve_logo_path",
]
