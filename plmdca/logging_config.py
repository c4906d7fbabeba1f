import logging
import sys
from typing import Optional, TextIO

SIMPLE_FORMAT = "[%(levelname)s] %(message)s"
LOGGER_PREFIX = "plmdca"


def setup_logging(verbose: bool = False, stream: Optional[TextIO] = None) -> logging.Logger:
    """Console handler on the plmdca logger, INFO when verbose and WARNING otherwise."""
    logger = logging.getLogger(LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.INFO if verbose else logging.WARNING)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))
    logger.addHandler(handler)
    return logger


def ensure_verbose_output():
    """Make INFO records visible when the caller has configured nothing."""
    logger = logging.getLogger(LOGGER_PREFIX)
    if not logger.handlers and not logging.getLogger().handlers:
        setup_logging(verbose=True)
    elif logger.getEffectiveLevel() > logging.INFO:
        logger.setLevel(logging.INFO)
