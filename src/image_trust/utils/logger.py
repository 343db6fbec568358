"""Logging setup for the image trust webhook."""

import logging
import sys
from typing import List, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# request-level chatter from the HTTP and Kubernetes clients and the dev server
NOISY_LOGGERS = ('urllib3', 'kubernetes', 'werkzeug')


def resolve_level(level: str) -> int:
    """Map a level name such as ``debug`` to its logging constant."""
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger for the webhook process.

    Records go to stdout, and also to ``log_file`` when one is given.
    Calling this again replaces the handlers installed by an earlier call.

    Returns:
        The configured root logger
    """
    log_level = resolve_level(level)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    root = logging.getLogger()
    root.debug("Logging at %s%s", logging.getLevelName(log_level),
               f" to stdout and {log_file}" if log_file else "")
    return root
