"""
Session store.

Loads, creates, persists and invalidates the session record of one
account. Login happens here; choosing between a fresh login and a resumed
session is CredentialResolver's job.
"""
from pathlib import Path
from typing import Optional, Union

from .models import (
    Credential,
    Identity,
    PasswordCredential,
    Session,
    TokenCredential,
)
from .protocols import SessionStorage
from .file_session import JSONSessionFile
from .memory_session import MemorySession
from ..api.protocols import ProtocolClient
from ..exceptions import AuthError, ProtocolError, SessionNotFoundError
from ..logging import get_logger

PathLike = Union[str, Path]


class SessionStore:
    """
    Durable persistence of the post-authentication session.

    Example:
        >>> store = SessionStore(api)
        >>> session = await store.authenticate(identity, PasswordCredential('alice', 'pw'))
        >>> store.persist(session, Path('session.json'))
    """

    def __init__(self, api: ProtocolClient, device_name: str = 'matrix-cli'):
        """
        Initialize session store.

        Args:
            api: Protocol client used for login and token verification
            device_name: Device display name sent on password login
        """
        self._api = api
        self._device_name = device_name
        self._memory = MemorySession()
        self._logger = get_logger('matrixcli.session')

    def storage_for(self, path: Optional[PathLike]) -> SessionStorage:
        """Storage backend for path (memory when no path is configured)."""
        if path is None:
            return self._memory
        return JSONSessionFile(path)

    def load(self, path: PathLike) -> Session:
        """
        Read and deserialize a stored session.

        Args:
            path: Session file location

        Returns:
            The stored session

        Raises:
            SessionNotFoundError: No session file at path
            StateCorruption: The file exists but cannot be parsed
        """
        session = self.storage_for(path).load()
        if session is None:
            raise SessionNotFoundError(path)
        return session

    async def authenticate(self, identity: Identity, credential: Credential) -> Session:
        """
        Authenticate against the homeserver.

        Never retried: a rejection is terminal and surfaced to the user.

        Args:
            identity: Homeserver and user the credential belongs to
            credential: Password or token credential

        Returns:
            A new Session for the authenticated identity

        Raises:
            AuthError: Credential rejected
            TransportError: Homeserver unreachable
        """
        if isinstance(credential, PasswordCredential):
            return await self._password_login(identity, credential)
        elif isinstance(credential, TokenCredential):
            return await self._token_login(identity, credential)
        else:
            raise TypeError(f"Unsupported credential type: {type(credential).__name__}")

    async def _password_login(self, identity: Identity, credential: PasswordCredential) -> Session:
        self._logger.info(f"Logging in as {credential.username} on {identity.homeserver_url}")
        response = await self._api.login(
            credential.username,
            credential.password,
            device_name=self._device_name
        )
        device_id = response.get('device_id')
        if not device_id:
            raise ProtocolError("Login response is missing device_id")

        session = Session(
            homeserver_url=identity.homeserver_url,
            user_id=response['user_id'],
            device_id=device_id,
            access_token=response['access_token'],
            refresh_token=response.get('refresh_token'),
        )
        self._logger.info(f"Logged in as {session.user_id} (device {session.device_id})")
        return session

    async def _token_login(self, identity: Identity, credential: TokenCredential) -> Session:
        self._api.access_token = credential.access_token
        response = await self._api.whoami()

        user_id = response.get('user_id')
        if not user_id:
            raise ProtocolError("whoami response is missing user_id")
        if identity.user_id.startswith('@') and user_id != identity.user_id:
            raise AuthError(
                f"Token belongs to {user_id}, expected {identity.user_id}",
                error_code='M_FORBIDDEN'
            )

        device_id = response.get('device_id') or credential.device_id
        if not device_id:
            raise ProtocolError("Cannot determine the device of the access token")

        return Session(
            homeserver_url=identity.homeserver_url,
            user_id=user_id,
            device_id=device_id,
            access_token=credential.access_token,
        )

    def persist(self, session: Session, path: Optional[PathLike]) -> None:
        """
        Write the session with an atomic replace.

        Args:
            session: Session to persist
            path: Destination; None keeps the session in memory only
        """
        self.storage_for(path).save(session)

    def invalidate(self, path: Optional[PathLike]) -> None:
        """
        Remove a stored session the server no longer accepts.

        Args:
            path: Session file location (None clears the in-memory copy)
        """
        self._logger.warning(f"Invalidating stored session at {path or '<memory>'}")
        self.storage_for(path).delete()
