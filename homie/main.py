"""
Homie - main entry point.

Runs the API server:

    homie
    LOG_LEVEL=DEBUG homie
"""

from __future__ import annotations

import logging

import uvicorn

from homie.config import get_settings


def main() -> None:
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        "homie.api.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
