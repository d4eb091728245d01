"""
Central logging configuration for calview.

Keeps calview's own diagnostics while quieting the HTTP and iCal libraries,
which log every request and component at DEBUG.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s - %(message)s"

# Third-party loggers that are too chatty below WARNING
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "icalendar")

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def configure_logging(
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Configure logging levels for calview.

    Args:
        debug_mode: Whether to enable debug logging for calview modules
        force_debug: Override debug mode setting (None to use env var detection)
        log_level: Root level from settings; CALVIEW_LOG_LEVEL still wins

    Environment Variables:
        CALVIEW_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        CALVIEW_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("CALVIEW_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("CALVIEW_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if log_level and log_level.upper() in VALID_LEVELS and not final_debug:
        root_level = getattr(logging, log_level.upper())
    if env_log_level in VALID_LEVELS:
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Leave handlers installed by the host application alone
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("calview").setLevel(logging.DEBUG if final_debug else root_level)

    if final_debug:
        root_logger.info("Debug logging enabled for calview modules")
    else:
        root_logger.debug("Logging configured (level=%s)", logging.getLevelName(root_level))


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("calview", *NOISY_LOGGERS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
