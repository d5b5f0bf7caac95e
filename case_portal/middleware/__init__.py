"""
Middleware Package
==================

FastAPI middleware for security headers.
"""

from .security import SecurityHeadersMiddleware

__all__ = [
    "SecurityHeadersMiddleware",
]
