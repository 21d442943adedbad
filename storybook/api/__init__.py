"""
API Module
==========
FastAPI router and application factory for the job control surface.
"""

from .app import build_processor, create_app
from .routes import router

__all__ = ["build_processor", "create_app", "router"]
