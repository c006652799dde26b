"""
Credential resolver.

Turns the configured identifiers into exactly one AuthMode. Pure
selection: no network access, nothing is written.
"""
from .models import (
    AuthMode,
    FreshLogin,
    Identity,
    PasswordCredential,
    ResumeSession,
    normalize_homeserver,
)
from .store import SessionStore
from ..config import ClientConfig
from ..exceptions import (
    ContradictoryCredentialsError,
    IncompleteCredentialsError,
    SessionNotFoundError,
)
from ..logging import get_logger


class CredentialResolver:
    """
    Selects between resuming a stored session and a fresh login.

    Precedence:
        1. A readable session file, unless force_login is set
        2. Username and password
    """

    def __init__(self, store: SessionStore):
        self._store = store
        self._logger = get_logger('matrixcli.session')

    def resolve(self, config: ClientConfig) -> AuthMode:
        """
        Choose the authentication mode for this invocation.

        Args:
            config: Global configuration

        Returns:
            ResumeSession or FreshLogin

        Raises:
            IncompleteCredentialsError: Fresh login needed but username or
                password missing
            ContradictoryCredentialsError: Stored session belongs to another
                homeserver
            StateCorruption: Session file exists but cannot be parsed
        """
        if config.session_file is not None and not config.force_login:
            try:
                session = self._store.load(config.session_file)
            except SessionNotFoundError:
                self._logger.debug(f"No session at {config.session_file}, fresh login required")
            else:
                if normalize_homeserver(session.homeserver_url) != normalize_homeserver(config.homeserver_url):
                    raise ContradictoryCredentialsError(
                        f"Session file {config.session_file} belongs to "
                        f"{session.homeserver_url}, not {config.homeserver_url}; "
                        f"use --force-login to replace it"
                    )
                self._logger.debug(f"Resuming session of {session.user_id}")
                return ResumeSession(session=session, path=config.session_file)

        missing = []
        if not config.username:
            missing.append('username')
        if not config.password:
            missing.append('password')
        if missing:
            raise IncompleteCredentialsError(tuple(missing))

        return FreshLogin(
            identity=Identity(homeserver_url=config.homeserver_url, user_id=config.username),
            credential=PasswordCredential(username=config.username, password=config.password),
        )
