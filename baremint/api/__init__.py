"""
REST API module for the Baremint core.
Provides the Helius webhook and the balance/access query surface.
"""

from .routes import router, create_api_app

__all__ = ["router", "create_api_app"]
