"""
Library module - transport helpers.
"""
from .websocket import ConnectionManager

__all__ = ["ConnectionManager"]
