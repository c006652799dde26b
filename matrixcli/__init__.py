"""
matrixcli - Async Matrix client with a local sync cache.

Usage:
    >>> from matrixcli import MatrixClient, ClientConfig
    >>>
    >>> config = ClientConfig.create("https://matrix.org", "alice", "secret")
    >>> async with MatrixClient(config) as client:
    ...     await client.commands.send_message("#ops:matrix.org", "deployed")
"""
import logging
from .client import MatrixClient
from .commands import CommandDispatcher

# Configuration
from .core.config import ClientConfig, SyncConfig
from .core.api import (
    APIConfig,
    ProxyConfig,
    SSLConfig,
    TimeoutConfig,
    RetryConfig,
    AsyncAPIClient,
    ProtocolClient
)

# Session management
from .core.session import (
    CredentialResolver,
    FreshLogin,
    Identity,
    PasswordCredential,
    ResumeSession,
    Session,
    SessionStore,
    TokenCredential
)

# Sync state
from .core.state import Membership, MessageEvent, RoomState, StateCache, SyncDelta
from .core.sync import SyncEngine, SyncStatus
from .core.logging import PACKAGE_LOGGERS

__version__ = '0.1.0'


def setup_logging(level=logging.INFO):
    """
    Configure logging for matrixcli modules.

    Sets the level of every matrixcli logger and keeps propagation on, so
    output goes wherever the root logger is configured to write.

    Args:
        level: Logging level (default: logging.INFO)
    """
    for logger_name in PACKAGE_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        logger.propagate = True


__all__ = [
    'MatrixClient',
    'CommandDispatcher',
    'ClientConfig',
    'SyncConfig',
    'APIConfig',
    'ProxyConfig',
    'SSLConfig',
    'TimeoutConfig',
    'RetryConfig',
    'AsyncAPIClient',
    'ProtocolClient',
    'CredentialResolver',
    'FreshLogin',
    'Identity',
    'PasswordCredential',
    'ResumeSession',
    'Session',
    'SessionStore',
    'TokenCredential',
    'Membership',
    'MessageEvent',
    'RoomState',
    'StateCache',
    'SyncDelta',
    'SyncEngine',
    'SyncStatus',
    'setup_logging',
]
