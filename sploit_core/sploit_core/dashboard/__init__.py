"""
Read-only HTTP status surface (FastAPI).
"""

from .app import create_app, serve_in_thread

__all__ = ['create_app', 'serve_in_thread']
