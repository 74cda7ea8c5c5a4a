"""Logging helpers for btrecon."""

from __future__ import annotations

import logging
import sys
from typing import Optional

ROOT_LOGGER = 'btrecon'
CHUNK_LOGGER = 'btrecon.chunks'
RSSI_LOGGER = 'btrecon.rssi'
RAW_LOGGER = 'btrecon.btmon'

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
BARE_FORMAT = '%(message)s'


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the btrecon namespace."""
    if name != ROOT_LOGGER and not name.startswith(f'{ROOT_LOGGER}.'):
        name = f'{ROOT_LOGGER}.{name}'
    return logging.getLogger(name)


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the btrecon logger hierarchy.

    Args:
        level: Log level name.
        log_file: Optional path; logs go to stderr when unset.

    Returns:
        The root btrecon logger.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    return root


def get_chunk_logger(enabled: bool, log_file: Optional[str] = None) -> Optional[logging.Logger]:
    """
    Diagnostic logger mirroring the chunks the pipeline used, or None when disabled.

    With ``log_file`` the chunks are also written there, one line per monitor line.
    """
    if not enabled and not log_file:
        return None
    chunk_logger = logging.getLogger(CHUNK_LOGGER)
    chunk_logger.setLevel(logging.DEBUG)
    chunk_logger.propagate = enabled
    if log_file:
        _attach_file(chunk_logger, log_file)
    return chunk_logger


def get_file_logger(name: str, log_file: Optional[str]) -> Optional[logging.Logger]:
    """
    Logger writing bare messages to ``log_file``, or None without a path.

    These logs carry data rather than diagnostics, so nothing propagates to
    the main btrecon handlers.
    """
    if not log_file:
        return None
    file_logger = logging.getLogger(name)
    file_logger.setLevel(logging.INFO)
    file_logger.propagate = False
    _attach_file(file_logger, log_file)
    return file_logger


def get_rssi_logger(log_file: Optional[str]) -> Optional[logging.Logger]:
    """RSSI sample log: ``<epoch> <address> <rssi>`` per observation."""
    return get_file_logger(RSSI_LOGGER, log_file)


def get_raw_logger(log_file: Optional[str]) -> Optional[logging.Logger]:
    """Raw monitor output, exactly as read."""
    return get_file_logger(RAW_LOGGER, log_file)


def _attach_file(target: logging.Logger, log_file: str) -> None:
    for handler in list(target.handlers):
        target.removeHandler(handler)
        handler.close()
    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(BARE_FORMAT))
    target.addHandler(handler)


def close_file_loggers() -> None:
    """Close the data log files."""
    for name in (CHUNK_LOGGER, RSSI_LOGGER, RAW_LOGGER):
        target = logging.getLogger(name)
        for handler in list(target.handlers):
            target.removeHandler(handler)
            handler.close()


app_logger = get_logger('btrecon.app')
