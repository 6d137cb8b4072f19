"""Logging setup for the API process and Celery workers."""

import logging
import sys

from config import settings

LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"

logger = logging.getLogger("crew_network")


def setup_logging(level: str = None) -> logging.Logger:
    """Configure root logging once and return the application logger."""
    root = logging.getLogger()
    root.setLevel(level or settings.LOG_LEVEL)

    # Avoid stacking handlers when called from both FastAPI lifespan and Celery
    if not any(getattr(h, "_crew_network", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handler._crew_network = True
        root.addHandler(handler)

    # Third-party noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger
