"""
Client configuration.

One ClientConfig is built per invocation (by the CLI or by library users)
and handed to every component constructor; nothing reads global state.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .api.config import APIConfig, ProxyConfig, RetryConfig, SSLConfig, TimeoutConfig


@dataclass
class SyncConfig:
    """
    Synchronization settings.

    Attributes:
        long_poll_timeout_ms: Server-side wait of a listen-mode sync request
        max_retries: Transport retries per catch-up request before giving up
        queue_size: Bound of the channel between listen() and its consumer
        full_state_on_first_sync: Request full room state when no cursor exists
        filter: Optional filter id or inline JSON filter
    """
    long_poll_timeout_ms: int = 30000
    max_retries: int = 5
    queue_size: int = 100
    full_state_on_first_sync: bool = True
    filter: Optional[str] = None


@dataclass
class ClientConfig:
    """
    Global configuration of one client invocation.

    Attributes:
        homeserver_url: Homeserver base URL, e.g. https://matrix.org
        username: Localpart or full user id for a fresh login
        password: Password for a fresh login (never persisted)
        session_file: Where the session is read from / written to
        store_path: Directory holding the per-account state cache
        force_login: Ignore an existing session file and log in again
        device_name: Device display name used on fresh login
        api: HTTP client settings
        sync: Synchronization settings
    """
    homeserver_url: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    session_file: Optional[Path] = None
    store_path: Optional[Path] = None
    force_login: bool = False
    device_name: str = 'matrix-cli'
    api: APIConfig = field(default_factory=APIConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    def __post_init__(self):
        self.homeserver_url = self.homeserver_url.rstrip('/')
        if self.session_file is not None:
            self.session_file = Path(self.session_file).expanduser()
        if self.store_path is not None:
            self.store_path = Path(self.store_path).expanduser()
        # The HTTP client always talks to the configured homeserver
        self.api.homeserver = self.homeserver_url

    @classmethod
    def create(
        cls,
        homeserver_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        session_file: Optional[Path] = None,
        store_path: Optional[Path] = None,
        *,
        force_login: bool = False,
        proxy: Optional[str] = None,
        verify_ssl: bool = True,
        timeout: float = 120.0,
        max_retries: int = 5,
        max_backoff: float = 30.0,
        long_poll_timeout_ms: int = 30000,
        user_agent: Optional[str] = None
    ) -> 'ClientConfig':
        """
        Create a configuration from plain options.

        Args:
            homeserver_url: Homeserver base URL
            username: Username for a fresh login
            password: Password for a fresh login
            session_file: Session file path
            store_path: State store directory
            force_login: Ignore an existing session
            proxy: Proxy URL (e.g., "http://proxy:8080")
            verify_ssl: Whether to verify SSL certificates
            timeout: Total request timeout in seconds
            max_retries: Transport retries of a catch-up sync request
            max_backoff: Ceiling of the retry delay in seconds
            long_poll_timeout_ms: Long-poll wait of listen mode
            user_agent: Custom user agent string

        Returns:
            ClientConfig instance
        """
        api = APIConfig(
            homeserver=homeserver_url,
            proxy=ProxyConfig(url=proxy) if proxy else None,
            ssl=SSLConfig(verify=verify_ssl, check_hostname=verify_ssl),
            timeout=TimeoutConfig(total=timeout),
            retry=RetryConfig(max_retries=max_retries, max_delay=max_backoff),
            user_agent=user_agent or 'matrixcli/0.1.0'
        )
        return cls(
            homeserver_url=homeserver_url,
            username=username,
            password=password,
            session_file=session_file,
            store_path=store_path,
            force_login=force_login,
            api=api,
            sync=SyncConfig(
                long_poll_timeout_ms=long_poll_timeout_ms,
                max_retries=max_retries
            )
        )
