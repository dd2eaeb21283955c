"""
Logging setup for the entrypoint.

All diagnostics go to a single stream (stdout) with an [entrypoint] prefix,
so they interleave cleanly with the indexer's own output in container logs.
"""
import logging
import sys


LOG_FORMAT = "[entrypoint] %(message)s"
PACKAGE_LOGGER = "indexer_entrypoint"


def configure_logging(level: str = "INFO", stream=None) -> logging.Logger:
    """
    Install the entrypoint handler on the package logger.

    Safe to call more than once; previous handlers are replaced.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def flush_logging():
    """Flush every handler on the package logger before exec."""
    for handler in logging.getLogger(PACKAGE_LOGGER).handlers:
        handler.flush()
