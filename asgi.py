"""
asgi.py -- ASGI entry point for HuntGate.

Run with:  uvicorn asgi:app --reload
           python main.py serve

The API is the whole application; this module exists so process managers
have one stable import path that does not change if api/main.py is split.
"""

from api.main import app

__all__ = ["app"]
