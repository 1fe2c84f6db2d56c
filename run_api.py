"""
Run the Baremint core API server.

Usage:
    python run_api.py

Serves the Helius webhook at /api/webhooks/helius and the balance/access
queries under /api.
"""

import uvicorn

from baremint.api import create_api_app
from baremint.config import get_settings
from baremint.utils.logging import setup_logging


def main():
    """Run the API server."""
    settings = get_settings()
    setup_logging(settings.log_level)

    app = create_api_app(settings)

    print(f"Starting Baremint API on {settings.api_host}:{settings.api_port}")
    print(f"API docs available at http://{settings.api_host}:{settings.api_port}/docs")

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
