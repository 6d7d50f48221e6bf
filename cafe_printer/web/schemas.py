from __future__ import annotations

"""
Pydantic schema for a form submission.

Limits are applied via the validation context passed at runtime, allowing
env-driven constraints without circular imports.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationInfo, field_validator

DEFAULT_LIMITS: Dict[str, int] = {
    "MAX_NAME_LEN": 60,
    "MAX_TEXT_LEN": 2000,
}


def _has_control_chars(s: str) -> bool:
    return any((ord(c) < 32 and c not in "\n\r\t") or ord(c) == 127 for c in s)


def _limit(info: ValidationInfo, key: str) -> int:
    ctx: Any = info.context or {}
    limits = ctx.get("limits") or {}
    try:
        return int(limits.get(key, DEFAULT_LIMITS[key]))
    except (TypeError, ValueError):
        return DEFAULT_LIMITS[key]


class Submission(BaseModel):
    """Text fields of one print request; the photo is validated separately."""

    name: Optional[str] = None
    text: Optional[str] = None

    @field_validator("name", "text", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if _has_control_chars(v) or "\n" in v or "\r" in v:
            raise ValueError("name contains control characters")
        if len(v) > _limit(info, "MAX_NAME_LEN"):
            raise ValueError(f"name too long (max {_limit(info, 'MAX_NAME_LEN')})")
        return v

    @field_validator("text")
    @classmethod
    def _validate_text(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is None:
            return v
        v = v.replace("\r\n", "\n")
        if _has_control_chars(v):
            raise ValueError("message contains control characters")
        if len(v) > _limit(info, "MAX_TEXT_LEN"):
            raise ValueError(f"message too long (max {_limit(info, 'MAX_TEXT_LEN')})")
        return v


__all__ = ["DEFAULT_LIMITS", "Submission"]
