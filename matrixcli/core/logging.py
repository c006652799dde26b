"""Logging utilities for matrixcli modules."""

import logging


PACKAGE_LOGGERS = (
    'matrixcli',
    'matrixcli.api',
    'matrixcli.client',
    'matrixcli.commands',
    'matrixcli.session',
    'matrixcli.state',
    'matrixcli.sync',
)


def get_logger(name: str) -> logging.Logger:
    """Get a logger that automatically inherits from root logger.

    Loggers work with basicConfig() without an explicit setup_logging()
    call. The logger will:
    - Propagate to root logger (default behavior)
    - Only set a default level if root logger has no handlers

    Args:
        name: Logger name (typically 'matrixcli.<component>')

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.propagate = True

    # Only set default level if root logger has no handlers
    # (i.e., basicConfig hasn't been called yet)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logger.setLevel(logging.WARNING)

    return logger


def mask_secret(value: str, visible: int = 4) -> str:
    """Mask a token for display, keeping only its last characters."""
    if not value:
        return ''
    if len(value) <= visible:
        return '*' * len(value)
    return '*' * 8 + value[-visible:]
