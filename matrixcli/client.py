"""
MatrixClient - High-level async client for one Matrix account.

Example:
    >>> config = ClientConfig.create("https://matrix.org", "alice", "secret",
    ...                              session_file=Path("~/.matrix-cli/session.json"))
    >>> async with MatrixClient(config) as client:
    ...     for room in await client.commands.joined_rooms():
    ...         print(room.label)
"""
from typing import Optional

from .commands import CommandDispatcher
from .core.api import AsyncAPIClient, ExponentialBackoffStrategy, ProtocolClient
from .core.config import ClientConfig
from .core.exceptions import AuthError
from .core.logging import get_logger, mask_secret
from .core.session import (
    CredentialResolver,
    FreshLogin,
    Identity,
    PasswordCredential,
    ResumeSession,
    Session,
    SessionStore,
)
from .core.state import StateCache
from .core.sync import SyncEngine


class MatrixClient:
    """
    High-level async client with session support.

    On start the client resumes the stored session (verifying its token)
    or logs in with username and password, persists the new session, and
    opens the per-account state cache.

    Usage:
        >>> client = MatrixClient(config)
        >>> await client.start()
        >>> await client.engine.catch_up()
        >>> await client.close()

    An AuthError escaping an ``async with MatrixClient(...)`` block
    invalidates the stored session; the next run has to log in again.
    """

    def __init__(self, config: ClientConfig, api: Optional[ProtocolClient] = None):
        """
        Initialize Matrix client.

        Args:
            config: Client configuration
            api: Protocol client to use instead of an AsyncAPIClient
                built from config.api
        """
        self._config = config
        self._api = api
        self._owns_api = api is None
        self._logger = get_logger('matrixcli.client')

        self._store: Optional[SessionStore] = None
        self._session: Optional[Session] = None
        self._cache: Optional[StateCache] = None
        self._engine: Optional[SyncEngine] = None
        self._commands: Optional[CommandDispatcher] = None

    # =========================================================================
    # Session management
    # =========================================================================

    async def start(self) -> 'MatrixClient':
        """
        Authenticate and open the state cache.

        Returns:
            Self for chaining

        Raises:
            ConfigError: Credentials incomplete or contradictory
            AuthError: Login rejected, or the stored token was rejected and
                no password was given for a fresh login
            StateCorruption: Session file or state store unreadable
        """
        if self._api is None:
            self._api = AsyncAPIClient(self._config.api)
        self._store = SessionStore(self._api, device_name=self._config.device_name)

        mode = CredentialResolver(self._store).resolve(self._config)
        if isinstance(mode, ResumeSession):
            self._session = await self._resume_session(mode)
        elif isinstance(mode, FreshLogin):
            self._session = await self._do_login(mode)
        else:
            raise TypeError(f"Unsupported auth mode: {type(mode).__name__}")

        self._cache = StateCache.open(self._config.store_path, self._session.identity)
        self._engine = SyncEngine(
            self._api,
            self._cache,
            self._config.sync,
            ExponentialBackoffStrategy(self._config.api.retry)
        )
        self._commands = CommandDispatcher(
            self._api,
            self._engine,
            self._cache,
            self._session.identity
        )
        return self

    async def _do_login(self, mode: FreshLogin) -> Session:
        """Perform fresh login and save session."""
        session = await self._store.authenticate(mode.identity, mode.credential)
        self._store.persist(session, self._config.session_file)
        if self._config.session_file is not None:
            self._logger.info(f"Session saved to {self._config.session_file}")
        return session

    async def _resume_session(self, mode: ResumeSession) -> Session:
        """Resume a stored session after checking its token with the server."""
        session = mode.session
        self._logger.info(
            f"Resuming session of {session.user_id} "
            f"(token {mask_secret(session.access_token)})"
        )
        try:
            await self._store.authenticate(session.identity, session.credential)
        except AuthError as e:
            self._store.invalidate(mode.path)
            self._api.access_token = None
            if not (self._config.username and self._config.password):
                raise AuthError(
                    f"Stored session was rejected ({e.message}); log in again with "
                    f"--username and --password",
                    error_code=e.error_code,
                    soft_logout=e.soft_logout
                ) from e

            self._logger.warning("Stored session was rejected, logging in again")
            return await self._do_login(FreshLogin(
                identity=Identity(
                    homeserver_url=self._config.homeserver_url,
                    user_id=self._config.username
                ),
                credential=PasswordCredential(
                    username=self._config.username,
                    password=self._config.password
                ),
            ))
        return session

    def invalidate_session(self) -> None:
        """Remove the stored session (the server no longer accepts it)."""
        if self._store is not None:
            self._store.invalidate(self._config.session_file)

    # =========================================================================
    # Accessors
    # =========================================================================

    def _require(self, component):
        if component is None:
            raise RuntimeError("Client not started; use 'async with' or call start()")
        return component

    @property
    def api(self) -> ProtocolClient:
        return self._require(self._api)

    @property
    def session(self) -> Session:
        return self._require(self._session)

    @property
    def identity(self) -> Identity:
        return self.session.identity

    @property
    def cache(self) -> StateCache:
        return self._require(self._cache)

    @property
    def engine(self) -> SyncEngine:
        return self._require(self._engine)

    @property
    def commands(self) -> CommandDispatcher:
        return self._require(self._commands)

    @property
    def is_logged_in(self) -> bool:
        """Check if logged in."""
        return self._session is not None

    # =========================================================================
    # Context manager
    # =========================================================================

    async def __aenter__(self) -> 'MatrixClient':
        """Enter async context - authenticates and opens the cache."""
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context - invalidates a rejected session, then cleans up."""
        try:
            if exc_type is not None and issubclass(exc_type, AuthError):
                self.invalidate_session()
        finally:
            await self.close()

    async def close(self):
        """Close the client and release resources."""
        if self._cache is not None:
            self._cache.close()
            self._cache = None

        if self._api is not None and self._owns_api:
            await self._api.close()
            self._api = None
