"""
Custom exceptions for matrixcli.

Every error raised by the session and synchronization core derives from
MatrixCliError, so callers can decide whether to retry, re-authenticate
or abort by looking at the exception class alone.
"""
from pathlib import Path
from typing import Optional, Union


class MatrixCliError(Exception):
    """Base exception for all matrixcli errors."""

    exit_code = 1

    def __init__(self, message: str, error_code: Optional[str] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            error_code: Matrix errcode or other machine readable code (if available)
        """
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class ConfigError(MatrixCliError):
    """Incomplete or contradictory configuration. Fatal, never retried."""

    exit_code = 2


class IncompleteCredentialsError(ConfigError):
    """Raised when a fresh login is needed but username or password is missing."""

    def __init__(self, missing: tuple) -> None:
        self.missing = tuple(missing)
        super().__init__(
            f"Missing {' and '.join(self.missing)}: a fresh login needs both "
            f"username and password (or a valid --session-file)",
            error_code='IncompleteCredentials'
        )


class ContradictoryCredentialsError(ConfigError):
    """Raised when configured values disagree with the stored session."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code='ContradictoryCredentials')


class AuthError(MatrixCliError):
    """
    Login rejected or access token expired/revoked.

    Triggers session invalidation. Never retried automatically.
    """

    exit_code = 3

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        soft_logout: bool = False
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message from the server or the client
            error_code: Matrix errcode (M_FORBIDDEN, M_UNKNOWN_TOKEN, ...)
            soft_logout: Server reported a soft logout (device still exists)
        """
        self.soft_logout = soft_logout
        super().__init__(message, error_code)


class TransportError(MatrixCliError):
    """Timeout, connection failure or transient server failure."""

    exit_code = 4


class ServerError(TransportError):
    """5xx-style response. Retryable for idempotent reads."""

    def __init__(self, status: int, message: str, error_code: Optional[str] = None) -> None:
        self.status = status
        super().__init__(message, error_code)


class RateLimitedError(TransportError):
    """429 / M_LIMIT_EXCEEDED response."""

    def __init__(self, message: str, retry_after_ms: Optional[int] = None) -> None:
        self.retry_after_ms = retry_after_ms
        super().__init__(message, error_code='M_LIMIT_EXCEEDED')


class StateCorruption(MatrixCliError):
    """
    Session file or state store cannot be parsed.

    Never treated as "empty": the user must remove or reset the file.
    """

    exit_code = 5

    def __init__(self, path: Optional[Union[str, Path]], reason: str) -> None:
        """
        Initialize the exception.

        Args:
            path: File or directory that could not be read
            reason: What was wrong with it
        """
        self.path = Path(path) if path is not None else None
        self.reason = reason
        location = str(self.path) if self.path is not None else '<memory>'
        super().__init__(
            f"Corrupt state at {location}: {reason}. "
            f"Remove or reset this file and run again.",
            error_code='StateCorruption'
        )


class ProtocolError(MatrixCliError):
    """Well-formed rejection from the server. Surfaced verbatim, not retried."""

    exit_code = 6

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status: Optional[int] = None
    ) -> None:
        self.status = status
        super().__init__(message, error_code)


class SessionNotFoundError(MatrixCliError):
    """No session stored at the given location."""

    def __init__(self, path: Optional[Union[str, Path]]) -> None:
        self.path = Path(path) if path is not None else None
        super().__init__(f"No session file at {path}", error_code='NotFound')


class StaleDeltaError(MatrixCliError):
    """A sync delta does not continue from the stored cursor."""

    def __init__(self, stored: Optional[str], since: Optional[str], next_cursor: str) -> None:
        self.stored = stored
        self.since = since
        self.next_cursor = next_cursor
        super().__init__(
            f"Delta {since!r} -> {next_cursor!r} does not continue from "
            f"stored cursor {stored!r}",
            error_code='StaleDelta'
        )


class CommandError(MatrixCliError):
    """Invalid command input or a local precondition that does not hold."""
    pass
