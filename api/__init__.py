"""
API Module for the lead qualification engine.

FastAPI application with routes for:
- Consultative conversation turns and state
- Qualification decisions and assessments
- Customer-support turns
"""

from .main import create_app, app

__all__ = ["create_app", "app"]
