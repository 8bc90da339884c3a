"""
Logging and validation utilities for the support log collector.

Provides:
- Centralized logging configuration
- Run transcript handler management
- Output root validation
- Run-fatal error type
"""
import logging
import os
import uuid
from typing import Any, Optional

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'
TRANSCRIPT_LOGGER = "support_collector.transcript"


def setup_logging(name: str = "support_collector", level: int = logging.INFO) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name
        level: Logging level (default INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger


# Create default logger
logger = setup_logging()


def open_transcript(path: str) -> logging.FileHandler:
    """
    Attach a file handler that records the run transcript.

    Warnings and errors from the collector logger and every live status line
    are written to `path` until close_transcript() is called.
    """
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(handler)

    transcript = logging.getLogger(TRANSCRIPT_LOGGER)
    transcript.propagate = False
    transcript.setLevel(logging.INFO)
    transcript.addHandler(handler)
    return handler


def close_transcript(handler: Optional[logging.Handler]) -> None:
    """Detach and close a transcript handler; safe to call with None."""
    if handler is None:
        return
    logger.removeHandler(handler)
    logging.getLogger(TRANSCRIPT_LOGGER).removeHandler(handler)
    handler.close()


# ============================================================================
# ERROR TYPES
# ============================================================================

class FatalCollectionError(RuntimeError):
    """Output root, work directory or archive failure. Aborts the run."""


# ============================================================================
# DATA VALIDATION
# ============================================================================

def validate_output_root(path: str) -> str:
    """
    Validate that the output root exists and is writable.

    Args:
        path: Directory in which the work dir and archive will be created

    Returns:
        The absolute output root

    Raises:
        FatalCollectionError: if the directory is missing or not writable
    """
    if not path:
        raise FatalCollectionError("Output root is empty")

    root = os.path.abspath(path)
    if not os.path.isdir(root):
        raise FatalCollectionError(f"Output root does not exist: {root}")

    probe = os.path.join(root, f".write_probe_{uuid.uuid4().hex}")
    try:
        with open(probe, "w", encoding="utf-8") as f:
            f.write("probe")
        os.remove(probe)
    except OSError as e:
        raise FatalCollectionError(f"Output root is not writable: {root} ({e})") from e

    return root


def safe_str(value: Any, default: str = "", max_length: int = 0) -> str:
    """
    Safely convert value to string with optional length limit.

    Args:
        value: Input value
        default: Default if conversion fails
        max_length: Maximum length (0 = unlimited)

    Returns:
        String value
    """
    try:
        if value is None:
            return default
        result = str(value)
        if max_length > 0 and len(result) > max_length:
            return result[:max_length]
        return result
    except Exception:
        return default
