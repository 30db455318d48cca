"""
asgi.py -- ASGI entry point for the gallery.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
