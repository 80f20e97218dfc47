"""
API module for SafeBack.

This module provides the aiohttp REST API for the admin UI and the
scheduler trigger.
"""

from .http_server import create_http_app, run_http_server

__all__ = ["create_http_app", "run_http_server"]
