"""
Map a PrintJob onto the command encoder.

Receipt layout, top to bottom:
  logo (optional) -> name (bold, double size, centered) -> body text (left)
  -> photo (centered) -> feed lines -> full cut

Image stages return StageResult values. A photo that fails to rasterize is
replaced by a short text annotation and the rest of the receipt still prints.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, List, Optional

from cafe_printer.core.config import get_setting
from cafe_printer.printing.encoder import CommandEncoder
from cafe_printer.printing.errors import JobTimeout, call_with_timeout
from cafe_printer.printing.jobs import PrintJob, StageResult
from cafe_printer.printing.raster import RasterBitmap, RasterError, rasterize

logger = logging.getLogger(__name__)

IMAGE_ERROR_ANNOTATION = "\n[Image processing error]\n"


@dataclass
class ComposedJob:
    commands: bytes
    stages: List[StageResult] = field(default_factory=list)

    @property
    def failed_stages(self) -> List[StageResult]:
        return [s for s in self.stages if not s.ok]


def rasterize_stage(
    image_bytes: bytes,
    config: Optional[Mapping[str, Any]],
    *,
    stage: str = "image",
    width_dots: Optional[int] = None,
) -> StageResult[RasterBitmap]:
    """
    Rasterize under the configured time bound. Never raises.
    """
    width = width_dots or get_setting(config, "dot_width", int)
    threshold = get_setting(config, "dither_threshold", float)
    gamma = get_setting(config, "contrast_gamma", float)
    timeout = get_setting(config, "raster_timeout_seconds", float)
    try:
        bitmap = call_with_timeout(
            lambda: rasterize(image_bytes, width, threshold=threshold, contrast_gamma=gamma),
            timeout,
            stage,
        )
        return StageResult.success(stage, bitmap)
    except (RasterError, JobTimeout) as e:
        logger.warning("%s rasterization failed: %s", stage, e)
        return StageResult.failure(stage, e)
    except Exception as e:
        logger.exception("Unexpected %s rasterization failure: %s", stage, e)
        return StageResult.failure(stage, e)


def _append_logo(enc: CommandEncoder, logo: RasterBitmap, job: PrintJob, config: Optional[Mapping[str, Any]]) -> None:
    enc.feed(1)
    if job.name:
        enc.set_alignment("left")
        enc.set_absolute_position(get_setting(config, "logo_offset_dots", int))
        enc.append_bitmap(logo)
    else:
        enc.set_alignment("center")
        enc.append_bitmap(logo)
        enc.set_alignment("left")
    enc.feed(1)


def _append_name(enc: CommandEncoder, name: str) -> None:
    enc.set_alignment("center")
    enc.set_bold(True)
    enc.set_text_size(2, 2)
    enc.append_text(name)
    enc.set_text_size(1, 1)
    enc.set_bold(False)
    enc.set_alignment("left")
    enc.feed(1)


def compose_job(
    job: PrintJob,
    config: Optional[Mapping[str, Any]] = None,
    *,
    logo: Optional[RasterBitmap] = None,
) -> ComposedJob:
    """
    Build the full command buffer for one job. Image failures degrade to an
    annotation; this function does not raise for them.
    """
    enc = CommandEncoder(encoding=get_setting(config, "text_encoding", str))
    stages: List[StageResult] = []

    enc.reset()

    logo_only_with_image = get_setting(config, "logo_with_images_only", bool)
    if logo is not None and (job.image is not None or not logo_only_with_image):
        _append_logo(enc, logo, job, config)

    if job.name:
        _append_name(enc, job.name)

    if job.text:
        enc.append_text(job.text)
        enc.feed(1)

    if job.image is not None:
        logger.info("Processing image %s (%d bytes)", job.image.filename, job.image.size)
        result = rasterize_stage(job.image.data, config, stage="image")
        stages.append(result)
        if result.ok and result.value is not None:
            enc.set_alignment("center")
            enc.append_bitmap(result.value)
            enc.set_alignment("left")
            enc.feed(1)
        else:
            enc.append_text(IMAGE_ERROR_ANNOTATION)

    enc.feed(get_setting(config, "feed_lines", int))
    if get_setting(config, "cut", bool):
        enc.cut()

    commands = enc.build()
    logger.info("Composed job %s: %d bytes", job.id, len(commands))
    return ComposedJob(commands=commands, stages=stages)


__all__ = ["IMAGE_ERROR_ANNOTATION", "ComposedJob", "compose_job", "rasterize_stage"]
