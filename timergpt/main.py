"""Console entry point: run the timer HTTP service."""
import sys

import uvicorn
from loguru import logger

from .config import settings
from .server import create_app


def main():
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    logger.info(f"Starting TimerGPT on {settings.host}:{settings.port}")

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
