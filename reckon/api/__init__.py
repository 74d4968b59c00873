"""
HTTP surface.

Usage:
    app = create_app(Settings(database_url="sqlite+aiosqlite:///./reckon.db"))
    # uvicorn "reckon.api:create_app" --factory
"""

from reckon.api._app import create_app

__all__ = ("create_app",)
