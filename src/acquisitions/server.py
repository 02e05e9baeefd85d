"""Run the API with uvicorn."""

import logging

import uvicorn

from .config import settings
from .logger import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(settings.log_level)
    logger.info("Listening on http://%s:%s", settings.host, settings.port)
    # Access lines come from AccessLogMiddleware
    uvicorn.run(
        "acquisitions.api:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
