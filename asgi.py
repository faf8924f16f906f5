"""
asgi.py -- Application assembly for the storefront admin backend.

Server entry point. api/main.py builds the app; this module is what the ASGI
server imports, so deployment config never has to know the package layout.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
