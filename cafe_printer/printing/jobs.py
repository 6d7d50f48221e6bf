"""
Print job data types and per-stage result values.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

BLANK_PRINT_TEXT = "blank print"

T = TypeVar("T")


@dataclass(frozen=True)
class JobImage:
    """Raw uploaded image, unprocessed."""

    filename: str
    mime_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class PrintJob:
    name: Optional[str] = None
    text: Optional[str] = None
    image: Optional[JobImage] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def summary(self) -> Dict[str, Any]:
        """Loggable metadata without the image payload."""
        meta: Dict[str, Any] = {
            "has_name": bool(self.name),
            "has_text": bool(self.text),
            "has_image": self.image is not None,
        }
        if self.image is not None:
            meta["image_name"] = self.image.filename
            meta["image_size"] = self.image.size
        return meta


def make_job(
    name: Optional[str] = None,
    text: Optional[str] = None,
    image: Optional[JobImage] = None,
) -> PrintJob:
    """
    Build a job the way the submission boundary does: blank fields become absent,
    empty images are dropped, and a job with neither text nor image gets a placeholder body.
    """
    name = name.strip() if name and name.strip() else None
    text = text if text and text.strip() else None
    if image is not None and not image.data:
        image = None
    if text is None and image is None:
        text = BLANK_PRINT_TEXT
    return PrintJob(name=name, text=text, image=image)


@dataclass(frozen=True)
class StageResult(Generic[T]):
    """
    Outcome of one pipeline stage. Failures are carried as values so a failed
    image stage can be reported without aborting the rest of the job.
    """

    stage: str
    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, stage: str, value: T) -> "StageResult[T]":
        return cls(stage=stage, ok=True, value=value)

    @classmethod
    def failure(cls, stage: str, error: BaseException) -> "StageResult[T]":
        return cls(stage=stage, ok=False, error=error)

    def describe(self) -> str:
        if self.ok:
            return f"{self.stage}: ok"
        return f"{self.stage}: {type(self.error).__name__}: {self.error}"


__all__ = ["BLANK_PRINT_TEXT", "JobImage", "PrintJob", "StageResult", "make_job"]
