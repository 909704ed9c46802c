"""
Main entry point for running the currency exchange service.
"""

import os

import uvicorn

from .api.app import app
from .utils.logging import setup_logging


def main() -> None:
    """Run the currency exchange service."""
    setup_logging(structured=os.environ.get("LOG_FORMAT") == "json")
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "3000")),
        log_level="info",
        lifespan="on",
    )


if __name__ == "__main__":
    main()
