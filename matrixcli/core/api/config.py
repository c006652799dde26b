"""
API configuration module.

Settings of the HTTP layer talking to a Matrix homeserver.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from urllib.parse import urlsplit, urlunsplit
import ssl


@dataclass
class ProxyConfig:
    """HTTP(S) proxy, optionally with basic auth credentials."""
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    def to_aiohttp_proxy(self) -> Optional[str]:
        """Proxy URL in the form aiohttp expects (credentials in the netloc)."""
        if not self.url:
            return None
        if not (self.username and self.password):
            return self.url

        parts = urlsplit(self.url)
        netloc = f"{self.username}:{self.password}@{parts.netloc}"
        return urlunsplit(parts._replace(netloc=netloc))


@dataclass
class SSLConfig:
    """TLS settings for homeservers with private CAs or client certificates."""
    verify: bool = True
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    ca_file: Optional[str] = None
    check_hostname: bool = True

    def create_ssl_context(self):
        """SSL context for the connector, or False to skip verification."""
        if not self.verify:
            return False

        context = ssl.create_default_context(cafile=self.ca_file)
        if self.cert_file:
            context.load_cert_chain(self.cert_file, keyfile=self.key_file)
        context.check_hostname = self.check_hostname
        return context


@dataclass
class TimeoutConfig:
    """
    Timeouts in seconds.

    sock_read must stay above the sync long-poll timeout, otherwise every
    idle long-poll ends in a client-side timeout. /sync requests replace
    these with a total derived from their long-poll timeout.
    """
    total: Optional[float] = 120.0
    connect: float = 30.0
    sock_read: float = 90.0
    sock_connect: float = 30.0

    def to_aiohttp_timeout(self):
        """Convert to aiohttp ClientTimeout."""
        import aiohttp
        return aiohttp.ClientTimeout(
            total=self.total,
            connect=self.connect,
            sock_read=self.sock_read,
            sock_connect=self.sock_connect
        )


@dataclass
class RetryConfig:
    """
    Backoff applied to failed sync requests.

    Attributes:
        max_retries: Default retry budget
        base_delay: Delay of the first retry in seconds
        max_delay: Ceiling of every delay, server hints included
        exponential_base: Growth factor per attempt
    """
    max_retries: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number (0-based)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class APIConfig:
    """
    Complete API configuration.

    Attributes:
        homeserver: Homeserver base URL (trailing slash removed)
        user_agent: User-Agent header
        proxy: Optional proxy
        ssl: TLS settings
        timeout: Default request timeouts
        retry: Backoff used by the sync engine
        extra_headers: Headers added to every request
        log_level: Level of the API logger when logging is not configured
        limit: Connection pool size
        limit_per_host: Connections per host
    """
    homeserver: str = 'https://matrix.org'
    user_agent: str = 'matrixcli/0.1.0'

    proxy: Optional[ProxyConfig] = None
    ssl: SSLConfig = field(default_factory=SSLConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    extra_headers: Dict[str, str] = field(default_factory=dict)

    log_level: int = 20  # logging.INFO

    limit: int = 100
    limit_per_host: int = 10

    def __post_init__(self):
        self.homeserver = self.homeserver.rstrip('/')

    @classmethod
    def default(cls) -> 'APIConfig':
        """Create default configuration."""
        return cls()

    @property
    def client_api_url(self) -> str:
        """Base URL of the client-server API."""
        return f"{self.homeserver}/_matrix/client/v3"

    @property
    def media_api_url(self) -> str:
        """Base URL of the media repository API."""
        return f"{self.homeserver}/_matrix/media/v3"

    def get_connector_kwargs(self) -> Dict[str, Any]:
        """Get kwargs for aiohttp TCPConnector."""
        return {
            'limit': self.limit,
            'limit_per_host': self.limit_per_host,
            'ssl': self.ssl.create_ssl_context(),
        }

    def get_session_kwargs(self) -> Dict[str, Any]:
        """Get kwargs for aiohttp ClientSession."""
        return {
            'headers': {'User-Agent': self.user_agent, **self.extra_headers},
            'timeout': self.timeout.to_aiohttp_timeout(),
        }
