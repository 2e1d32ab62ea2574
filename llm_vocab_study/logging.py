import logging
import os

import structlog


def configure_logging(debug: bool = False) -> None:
    """Configure structlog for the plugin, the worker and the scripts.

    Initialises stdlib logging at INFO (DEBUG when ``DEBUG=1`` or ``debug`` is set)
    and renders events as key=value lines with ISO timestamps.
    """
    level = logging.DEBUG if debug or os.getenv("DEBUG", "0") == "1" else logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()
