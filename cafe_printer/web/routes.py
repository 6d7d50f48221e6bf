from __future__ import annotations

"""
Submission routes for Cafe Printer.

This blueprint provides:
- GET /, GET /chat : the form (name, message, photo)
- POST /chat       : parse the multipart form, enqueue a PrintJob, reply "queued"

The reply only acknowledges that the job entered the queue; printing happens
later on the worker thread and may still fail.
"""

import os
from typing import Optional

from flask import Blueprint, current_app, make_response, render_template, request
from pydantic import ValidationError

from cafe_printer.core.assets import is_supported_image
from cafe_printer.printing.jobs import JobImage, make_job
from cafe_printer.printing.worker import enqueue_job, ensure_worker

from . import schemas

web_bp = Blueprint("web", __name__)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except Exception:
        return default


MAX_NAME_LEN = _env_int("CAFEPRINTER_MAX_NAME_LEN", 60)
MAX_TEXT_LEN = _env_int("CAFEPRINTER_MAX_TEXT_LEN", 2000)
MAX_UPLOAD_SIZE = _env_int("CAFEPRINTER_MAX_UPLOAD_SIZE", 15 * 1024 * 1024)


class SubmissionError(ValueError):
    """Client-side problem with the submitted form."""


def _text_response(body: str, status: int = 200):
    resp = make_response(body, status)
    resp.mimetype = "text/plain"
    return resp


def _read_image() -> Optional[JobImage]:
    upload = request.files.get("image")
    if upload is None or not upload.filename:
        return None
    data = upload.read()
    if not data:
        return None
    if len(data) > MAX_UPLOAD_SIZE:
        raise SubmissionError(f"image too large (max {MAX_UPLOAD_SIZE} bytes)")
    mime_type = upload.mimetype or ""
    if not is_supported_image(upload.filename, mime_type):
        raise SubmissionError("unsupported image type")
    return JobImage(filename=upload.filename, mime_type=mime_type, data=data)


@web_bp.get("/")
@web_bp.get("/chat")
def index():
    return render_template("index.html")


@web_bp.post("/chat")
def submit():
    current_app.logger.info(
        "POST /chat received: content_type=%s content_length=%s",
        request.content_type,
        request.content_length,
    )
    try:
        fields = schemas.Submission.model_validate(
            {"name": request.form.get("name"), "text": request.form.get("text")},
            context={"limits": {"MAX_NAME_LEN": MAX_NAME_LEN, "MAX_TEXT_LEN": MAX_TEXT_LEN}},
        )
        image = _read_image()
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        msg = str(first.get("msg", "invalid submission"))
        current_app.logger.info("Rejected submission: %s", msg)
        return _text_response(f"invalid submission: {msg}", 400)
    except SubmissionError as e:
        current_app.logger.info("Rejected submission: %s", e)
        return _text_response(f"invalid submission: {e}", 400)
    except Exception as e:
        current_app.logger.exception("Error processing form data: %s", e)
        return _text_response(f"error processing form: {e}", 500)

    job = make_job(name=fields.name, text=fields.text, image=image)
    ensure_worker()
    job_id = enqueue_job(job)
    current_app.logger.info("Job %s queued: %s", job_id, job.summary())
    resp = _text_response("queued")
    resp.headers["X-Job-Id"] = job_id
    return resp
