"""Process-wide logging setup shared by the API and the worker."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Send records to stdout at ``level``. Safe to call more than once."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # SQL echo is controlled by the engine, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
