"""Matrix client-server API module."""
from .errors import MatrixAPIError, MatrixErrorCodes, error_from_response
from .config import APIConfig, ProxyConfig, SSLConfig, TimeoutConfig, RetryConfig
from .async_client import AsyncAPIClient
from .protocols import ProtocolClient
from .retry import RetryStrategy, ExponentialBackoffStrategy

__all__ = [
    # Client
    'AsyncAPIClient',
    'ProtocolClient',

    # Configuration
    'APIConfig',
    'ProxyConfig',
    'SSLConfig',
    'TimeoutConfig',
    'RetryConfig',

    # Retry
    'RetryStrategy',
    'ExponentialBackoffStrategy',

    # Errors
    'MatrixAPIError',
    'MatrixErrorCodes',
    'error_from_response',
]
