"""
In-memory session storage implementation.

Used when no session file is configured: the token lives only for the
current run.
"""
from typing import Optional

from .protocols import SessionStorage
from .models import Session


class MemorySession(SessionStorage):
    """
    In-memory session storage.

    Stores the session in memory only. Data is lost when the object is
    destroyed.

    Example:
        >>> storage = MemorySession()
        >>> storage.save(session)
        >>> loaded = storage.load()
    """

    def __init__(self):
        """Initialize memory session storage."""
        self._data: Optional[Session] = None

    def load(self) -> Optional[Session]:
        """Load session data from memory."""
        return self._data

    def save(self, data: Session) -> None:
        """Save session data to memory."""
        self._data = data

    def delete(self) -> None:
        """Delete session data from memory."""
        self._data = None

    def exists(self) -> bool:
        """Check if session exists."""
        return self._data is not None

    def close(self) -> None:
        """Close storage (no-op for memory storage)."""
        pass

    def __enter__(self) -> 'MemorySession':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
