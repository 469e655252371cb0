"""
API Routes for the lead qualification engine.
"""

from . import conversations, support

__all__ = ["conversations", "support"]
