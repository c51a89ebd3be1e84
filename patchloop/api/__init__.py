"""
API module - All route handlers.
"""
from . import health, sessions

__all__ = [
    "health",
    "sessions",
]
