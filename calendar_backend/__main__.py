# calendar_backend/__main__.py
import logging
import sys

import uvicorn

from calendar_backend.config import load_settings
from calendar_backend.exceptions import ConfigurationError
from calendar_backend.logging_config import configure_logging


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        logging.getLogger(__name__).critical(f"Configuration Error: {e}")
        sys.exit(1)

    configure_logging(settings.log_level)
    logging.getLogger(__name__).info(f"Server is running on port {settings.port}")
    uvicorn.run(
        "calendar_backend.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        log_config=None,
        timeout_graceful_shutdown=5,
    )


if __name__ == "__main__":
    main()
