"""
Centralized logging configuration for thousand-words.
Initializes loguru and intercepts standard library logging.
"""

import logging
import sys

from loguru import logger


class InterceptHandler(logging.Handler):
    """
    Default handler from documents for intercepting standard library logging messages.
    See: https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging
    """

    def emit(self, record):
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


# Driver loggers that otherwise bypass loguru
NOISY_LOGGERS = ["uvicorn", "uvicorn.access", "uvicorn.error", "psycopg", "psycopg.pool", "botocore", "urllib3"]


def setup_logging(level: str = "INFO"):
    """
    Configures loguru to handle all logs and output them to stdout.

    Args:
        level: Minimum level for the stdout sink.
    """
    logger.remove()

    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name in NOISY_LOGGERS:
        _logger = logging.getLogger(name)
        _logger.handlers = [InterceptHandler()]
        _logger.propagate = False

    # botocore is chatty at DEBUG even when nothing is wrong
    logging.getLogger("botocore").setLevel(logging.WARNING)

    logger.info("Logging initialized with Loguru.")
