"""
Session storage protocol.

SessionStore picks a backend per configured location: a JSON file when a
session file is given, memory otherwise.
"""
from typing import Protocol, Optional, runtime_checkable
from .models import Session


@runtime_checkable
class SessionStorage(Protocol):
    """Where one post-authentication Session is kept between runs."""

    def load(self) -> Optional[Session]:
        """
        Read the stored session.

        Returns:
            Session, or None when nothing is stored

        Raises:
            StateCorruption: Stored data exists but cannot be parsed
        """
        ...

    def save(self, data: Session) -> None:
        """Replace the stored session; a reader never sees a partial write."""
        ...

    def delete(self) -> None:
        """Forget the stored session (no-op when absent)."""
        ...

    def exists(self) -> bool:
        ...

    def close(self) -> None:
        ...
