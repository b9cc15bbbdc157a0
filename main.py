"""
Production entrypoint for mdpaste.
Run with `uvicorn main:app`; the application itself is built in server.py.
"""

from server import app

__all__ = ["app"]
