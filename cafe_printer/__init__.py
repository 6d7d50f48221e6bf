"""
Cafe Printer package

This module provides an application factory with minimal wiring:
- Configures logging via cafe_printer.core.logging
- Creates a Flask app with the template folder pointing at the repository-level dir
- Initializes CSRF protection and sets a CSRF cookie after safe requests
- Registers the submission, job status, and health blueprints
- Optionally installs a PrinterRuntime and ensures the background worker is started
"""

from __future__ import annotations

import importlib
import logging
import os
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from flask import Flask, g, request
from flask_wtf import CSRFProtect
from flask_wtf.csrf import generate_csrf
from jinja2 import StrictUndefined

from cafe_printer.core.logging import configure_logging

if TYPE_CHECKING:
    from cafe_printer.printing.worker import PrinterRuntime

csrf = CSRFProtect()

logger = logging.getLogger(__name__)

DEFAULT_BLUEPRINTS: Sequence[tuple[str, str]] = (
    ("cafe_printer.web.routes", "web_bp"),  # form + submission
    ("cafe_printer.web.jobs", "jobs_bp"),  # job status
    ("cafe_printer.web.health", "health_bp"),  # health endpoint
)


def _default_secret_key() -> str:
    return os.environ.get("CAFEPRINTER_SECRET_KEY", "cafeprinter_dev_secret_key")


def _register_blueprint(app: Flask, import_path: str, attr: str) -> None:
    mod = importlib.import_module(import_path)
    app.register_blueprint(getattr(mod, attr))
    app.logger.debug(f"Registered blueprint: {import_path}.{attr}")


def _set_csrf_cookie(response):
    """
    Ensure a CSRF cookie is present for the form's fetch() submission.
    """
    token = generate_csrf()
    response.set_cookie("csrf_token", token, secure=False, httponly=False, samesite="Lax")
    return response


def create_app(
    config_overrides: Optional[dict] = None,
    blueprints: Optional[Sequence[tuple[str, str]]] = None,
    register_worker: bool = True,
    runtime: Optional["PrinterRuntime"] = None,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults
    - blueprints: optional list of (import_path, attribute) tuples to register
      If None, DEFAULT_BLUEPRINTS is used.
    - register_worker: if True, starts the background queue consumer
    - runtime: PrinterRuntime to install as the process-wide runtime; built
      lazily from the saved config when omitted

    Returns:
    - Flask app instance
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root = pkg_dir.parent
    templates_dir = repo_root / "templates"

    app = Flask(
        "cafe_printer",
        template_folder=str(templates_dir) if templates_dir.exists() else None,
    )
    app.jinja_env.undefined = StrictUndefined

    app.secret_key = _default_secret_key()
    # Phone photos are large; 20 MiB default
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("CAFEPRINTER_MAX_CONTENT_LENGTH", 20 * 1024 * 1024))

    csrf.init_app(app)

    configure_logging()
    app.logger.info("Cafe Printer app created")

    app.url_map.strict_slashes = False

    @app.before_request
    def _before_request():
        g.request_id = getattr(g, "request_id", uuid.uuid4().hex)

    @app.after_request
    def _after_request(response):
        if request.method in ("GET", "HEAD", "OPTIONS"):
            return _set_csrf_cookie(response)
        return response

    for import_path, attr in blueprints or DEFAULT_BLUEPRINTS:
        _register_blueprint(app, import_path, attr)

    from cafe_printer.printing import worker

    if runtime is not None:
        worker.set_runtime(runtime)
    if register_worker:
        worker.ensure_worker(runtime)
        app.logger.info("Background worker ensured")

    if config_overrides:
        app.config.update(config_overrides)

    return app


__all__ = ["create_app", "csrf"]
