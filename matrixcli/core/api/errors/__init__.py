"""Matrix API errors and exceptions."""
from .api_errors import MatrixAPIError, MatrixErrorCodes, error_from_response

__all__ = [
    'MatrixAPIError',
    'MatrixErrorCodes',
    'error_from_response',
]
