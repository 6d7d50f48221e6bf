"""
Web module for Cafe Printer.

Exposes blueprints for:
- Form and submission routes: web_bp
- Job status endpoints: jobs_bp
- Health endpoint: health_bp
"""

from .health import health_bp
from .jobs import jobs_bp
from .routes import web_bp

__all__ = ["health_bp", "jobs_bp", "web_bp"]
