"""Logging helpers shared by the core and the HTTP layer."""

import logging
import sys
from typing import TextIO


def setup_logging(
    level: int = logging.WARNING, stream: TextIO = sys.stderr
) -> logging.Logger:
    """
    Configure the ``pkce-exchange`` logger hierarchy.

    Args:
        level: Logging level for the package loggers.
        stream: Output stream for the handler (defaults to stderr).

    Returns:
        The configured ``pkce-exchange`` root logger.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Replace existing handlers so repeated calls do not duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(handler)

    logger = logging.getLogger("pkce-exchange")
    logger.setLevel(level)
    # uvicorn keeps its own access log; align the level only
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    return logger


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """
    Mask a sensitive value for logging.

    Args:
        value: The string to mask.
        keep_chars: Number of characters to keep visible at the start and end.

    Returns:
        The masked string, or ``"Not Provided"`` when empty.
    """
    if not value:
        return "Not Provided"
    if len(value) <= keep_chars * 2:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars * 2) + value[-keep_chars:]
