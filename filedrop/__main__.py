"""
Run the API with uvicorn: ``python -m filedrop``.
"""

from __future__ import annotations

import logging

import uvicorn

from filedrop.app import create_app
from filedrop.config import get_settings

logger = logging.getLogger(__name__)

ENDPOINTS = (
    "POST   /auth/signup",
    "POST   /auth/login",
    "POST   /upload (protected)",
    "GET    /files (protected)",
    "DELETE /files/{fileId} (protected)",
    "GET    /health",
)


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = create_app(settings)
    logger.info("Server running on http://%s:%s", settings.host, settings.port)
    for endpoint in ENDPOINTS:
        method, path = endpoint.split(maxsplit=1)
        logger.info("  %-6s %s%s", method, settings.api_prefix, path)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
