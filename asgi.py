"""
asgi.py -- ASGI entry point for MediaVault.

The application is assembled in api/main.py; this module only gives process
managers a stable import path.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
