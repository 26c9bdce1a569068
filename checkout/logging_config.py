"""
logging_config.py: Centralized logging configuration for the checkout service.

All modules log through the standard ``logging`` package with one shared format,
written to stdout and, when ``LOG_FILE`` is set, to a file as well.
"""

import logging
import sys

from checkout.config import LOG_FILE, LOG_LEVEL


def setup_logging():
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: taken from LOG_LEVEL (INFO by default)
        - Log format: timestamp, log level, process ID, and message
        - Output destinations:
            1. Console (stdout): real-time logs, Docker/Kubernetes compatible
            2. File: LOG_FILE, only when configured
        - Reduced verbosity for third-party libraries (httpx, stripe)
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'

    handlers = [logging.StreamHandler(sys.stdout)]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format=log_format,
        handlers=handlers,
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
