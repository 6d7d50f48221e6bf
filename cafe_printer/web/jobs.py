from __future__ import annotations

"""
Jobs endpoints for Cafe Printer.

This blueprint exposes:
- GET /jobs: JSON list of known jobs, newest first
- GET /jobs/<job_id>: JSON status for a specific job (404 if not found)
"""

from flask import Blueprint, current_app

from cafe_printer.printing.worker import get_job, list_jobs

jobs_bp = Blueprint("jobs", __name__)


@jobs_bp.get("/jobs/<job_id>")
def job_status(job_id: str):
    job = get_job(job_id)
    if job:
        current_app.logger.info("GET /jobs/%s ok status=%s", job_id, job.get("status"))
        return job
    current_app.logger.info("GET /jobs/%s not found", job_id)
    return {"error": "not_found"}, 404


@jobs_bp.get("/jobs")
def jobs_list():
    jobs = list_jobs()
    current_app.logger.info("GET /jobs list count=%d", len(jobs))
    return {"jobs": jobs}
