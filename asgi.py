"""
asgi.py -- Application assembly for the auth service.

The HTTP boundary is assembled in api/main.py; this module is the stable
import path for ASGI servers, so deployment config never has to change when
api/ is reorganized.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
