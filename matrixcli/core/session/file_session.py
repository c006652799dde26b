"""
JSON file session storage implementation.

The session file is a single JSON object. Writes go to a sibling temp
file which is flushed, fsynced and then renamed over the target, so an
interrupted write leaves either the old file or the new one, never a
truncated file.
"""
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union

from .protocols import SessionStorage
from .models import Session
from ..exceptions import StateCorruption
from ..logging import get_logger


class JSONSessionFile(SessionStorage):
    """
    JSON file based session storage.

    Example:
        >>> storage = JSONSessionFile("~/.config/matrix-cli/session.json")
        >>> storage.save(session)
        >>> loaded = storage.load()
    """

    def __init__(self, path: Union[str, Path]):
        """
        Initialize JSON session storage.

        Args:
            path: Location of the session file
        """
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._logger = get_logger('matrixcli.session')

    @property
    def path(self) -> Path:
        """Get session file path."""
        return self._path

    def load(self) -> Optional[Session]:
        """
        Load the session from disk.

        Returns:
            Session if the file exists, None otherwise

        Raises:
            StateCorruption: The file exists but is not a valid session
        """
        with self._lock:
            try:
                raw = self._path.read_text(encoding='utf-8')
            except FileNotFoundError:
                return None
            except IsADirectoryError:
                raise StateCorruption(self._path, "expected a file, found a directory")

        try:
            return Session.from_json(raw)
        except (ValueError, TypeError) as e:
            # json.JSONDecodeError is a ValueError
            raise StateCorruption(self._path, f"unreadable session file ({e})") from e

    def save(self, data: Session) -> None:
        """
        Persist the session atomically.

        Creates the parent directory if needed. The file is only readable
        by the owner since it holds an access token.

        Args:
            data: Session to save
        """
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._path.parent),
                prefix=f".{self._path.name}.",
                suffix='.tmp'
            )
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                    json.dump(data.to_dict(), fh, indent=2)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_path, self._path)
            except BaseException:
                # Clean up temp file on any failure
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise

        self._logger.debug(f"Session for {data.user_id} written to {self._path}")

    def delete(self) -> None:
        """Delete the session file (no-op when absent)."""
        with self._lock:
            try:
                self._path.unlink()
            except FileNotFoundError:
                return
        self._logger.info(f"Session file {self._path} removed")

    def exists(self) -> bool:
        """Check if the session file exists."""
        return self._path.is_file()

    def close(self) -> None:
        """Close storage (nothing is held open between calls)."""
        pass

    def __enter__(self) -> 'JSONSessionFile':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
