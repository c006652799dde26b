"""Matrix API error codes and response-to-exception mapping."""
from typing import Any, Dict, Optional

from ...exceptions import (
    AuthError,
    MatrixCliError,
    ProtocolError,
    RateLimitedError,
    ServerError,
)


class MatrixErrorCodes:
    """Matrix client-server API error codes."""

    ERROR_CODES: Dict[str, str] = {
        'M_FORBIDDEN': 'Forbidden access, e.g. joining a room without permission or failed login.',
        'M_UNKNOWN_TOKEN': 'The access token specified was not recognised.',
        'M_MISSING_TOKEN': 'No access token was specified for the request.',
        'M_USER_DEACTIVATED': 'The user ID is associated with a deactivated account.',
        'M_BAD_JSON': 'Request contained valid JSON, but it was malformed in some way.',
        'M_NOT_JSON': 'Request did not contain valid JSON.',
        'M_NOT_FOUND': 'No resource was found for this request.',
        'M_LIMIT_EXCEEDED': 'Too many requests have been sent in a short period of time.',
        'M_UNRECOGNIZED': 'The server did not understand the request.',
        'M_UNKNOWN': 'An unknown error has occurred.',
        'M_UNAUTHORIZED': 'The request was not correctly authorized.',
        'M_USER_IN_USE': 'Encountered when trying to register a user ID which has been taken.',
        'M_INVALID_USERNAME': 'Encountered when trying to register a user ID which is not valid.',
        'M_ROOM_IN_USE': 'Sent when the room alias given to the createRoom API is already in use.',
        'M_INVALID_ROOM_STATE': 'Sent when the initial state given to the createRoom API is invalid.',
        'M_UNSUPPORTED_ROOM_VERSION': 'The server does not support the requested room version.',
        'M_INCOMPATIBLE_ROOM_VERSION': 'The room version is not supported by this homeserver.',
        'M_BAD_STATE': 'The state change requested cannot be performed.',
        'M_GUEST_ACCESS_FORBIDDEN': 'The room or resource does not permit guests to access it.',
        'M_INVALID_PARAM': 'A parameter that was specified has the wrong value.',
        'M_TOO_LARGE': 'The request or entity was too large.',
        'M_EXCLUSIVE': 'The resource being requested is reserved by an application service.',
        'M_RESOURCE_LIMIT_EXCEEDED': 'The homeserver has hit a resource limit.',
        'M_CANNOT_LEAVE_SERVER_NOTICE_ROOM': 'The user is unable to reject an invite to the server notices room.',
    }

    # errcodes that mean the access token can no longer be used
    AUTH_ERRCODES = frozenset({
        'M_UNKNOWN_TOKEN',
        'M_MISSING_TOKEN',
        'M_USER_DEACTIVATED',
    })

    @classmethod
    def get_message(cls, errcode: Optional[str]) -> str:
        """Gets a description for an errcode."""
        if not errcode:
            return 'Unknown error'
        return cls.ERROR_CODES.get(errcode, f"Unknown error: {errcode}")


class MatrixAPIError(ProtocolError):
    """Exception raised for well-formed Matrix API rejections."""

    def __init__(self, status: int, errcode: Optional[str], error: Optional[str] = None):
        self.errcode = errcode
        message = error or MatrixErrorCodes.get_message(errcode)
        if errcode:
            message = f"{errcode}: {message}"
        super().__init__(message, error_code=errcode, status=status)


def error_from_response(
    status: int,
    body: Any,
    *,
    login: bool = False
) -> MatrixCliError:
    """
    Map an unsuccessful HTTP response onto the error taxonomy.

    Args:
        status: HTTP status code
        body: Decoded JSON body (or raw text when the body is not JSON)
        login: The request was a login attempt, so M_FORBIDDEN means
            rejected credentials

    Returns:
        The exception to raise
    """
    payload = body if isinstance(body, dict) else {}
    errcode = payload.get('errcode')
    error = payload.get('error') or (body if isinstance(body, str) and body else None)

    if status == 429 or errcode == 'M_LIMIT_EXCEEDED':
        return RateLimitedError(
            error or MatrixErrorCodes.get_message('M_LIMIT_EXCEEDED'),
            retry_after_ms=payload.get('retry_after_ms')
        )

    if status >= 500:
        return ServerError(status, f"Server error {status}: {error or 'no details'}", errcode)

    if status == 401 or errcode in MatrixErrorCodes.AUTH_ERRCODES:
        return AuthError(
            error or MatrixErrorCodes.get_message(errcode),
            error_code=errcode,
            soft_logout=bool(payload.get('soft_logout', False))
        )

    if login and status == 403:
        return AuthError(
            error or 'Invalid username or password',
            error_code=errcode or 'M_FORBIDDEN'
        )

    return MatrixAPIError(status, errcode, error)
