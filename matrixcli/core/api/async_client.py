"""
Async Matrix API client.

Fully asynchronous client for the Matrix client-server API with
comprehensive configuration support.
"""
import json
import uuid
import asyncio
import logging
from typing import Dict, Optional, Any, List
from urllib.parse import quote
import aiohttp

from .config import APIConfig
from .errors import error_from_response
from ..exceptions import ProtocolError, TransportError
from ..logging import get_logger


class AsyncAPIClient:
    """
    Asynchronous Matrix API client.

    Features:
    - Full async/await support
    - Configurable proxy, SSL, timeouts
    - Connection pooling
    - Typed errors (AuthError, TransportError, ProtocolError)

    Requests are sent exactly once. Retrying is left to the caller, which
    knows whether a request is an idempotent read.

    Example:
        >>> config = APIConfig(homeserver='https://matrix.org')
        >>> async with AsyncAPIClient(config) as client:
        ...     info = await client.login('alice', 'secret')
    """

    def __init__(self, config: Optional[APIConfig] = None, access_token: Optional[str] = None):
        """
        Initialize async API client.

        Args:
            config: API configuration (uses defaults if not provided)
            access_token: Token of an existing session, if any
        """
        self._config = config or APIConfig.default()
        self._session: Optional[aiohttp.ClientSession] = None
        self._connector: Optional[aiohttp.TCPConnector] = None
        self.access_token: Optional[str] = access_token
        self._closed = False

        self._logger = get_logger('matrixcli.api')
        root_logger = logging.getLogger()
        if not root_logger.handlers:
            self._logger.setLevel(self._config.log_level)

    @property
    def config(self) -> APIConfig:
        """Get current configuration."""
        return self._config

    async def __aenter__(self) -> 'AsyncAPIClient':
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session is created and open."""
        if self._session is None or self._session.closed:
            self._connector = aiohttp.TCPConnector(
                **self._config.get_connector_kwargs()
            )
            self._session = aiohttp.ClientSession(
                connector=self._connector,
                **self._config.get_session_kwargs()
            )
        return self._session

    async def close(self):
        """Close client and release resources."""
        self._closed = True

        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

        if self._connector and not self._connector.closed:
            await self._connector.close()
            self._connector = None

    def _build_url(self, path: str, api: str = 'client') -> str:
        """Build request URL for the client or media API."""
        base = self._config.media_api_url if api == 'media' else self._config.client_api_url
        return f"{base}{path}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        api: str = 'client',
        auth: bool = True,
        login: bool = False,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Make a single request to the homeserver.

        Args:
            method: HTTP method
            path: Path below the API prefix, already quoted
            json_body: JSON request body
            params: Query string parameters
            data: Raw body (uploads)
            headers: Extra headers
            api: 'client' or 'media'
            auth: Send the access token
            login: Request is a login attempt (403 means bad credentials)
            timeout: Total timeout override in seconds

        Returns:
            Decoded JSON response

        Raises:
            AuthError: Credentials or token rejected
            TransportError: Timeout, connection failure, 5xx or 429
            ProtocolError: Any other rejection or a malformed response
        """
        if self._closed:
            raise TransportError("Client is closed")

        session = await self._ensure_session()
        url = self._build_url(path, api)

        request_headers = dict(headers or {})
        if auth and self.access_token:
            request_headers['Authorization'] = f"Bearer {self.access_token}"

        kwargs: Dict[str, Any] = {
            'headers': request_headers,
            'proxy': self._config.proxy.to_aiohttp_proxy() if self._config.proxy else None,
        }
        if json_body is not None:
            kwargs['json'] = json_body
        if data is not None:
            kwargs['data'] = data
        if params:
            query = []
            for key, value in params.items():
                if value is None:
                    continue
                if isinstance(value, (list, tuple)):
                    query.extend((key, str(item)) for item in value)
                else:
                    query.append((key, str(value)))
            kwargs['params'] = query
        if timeout is not None:
            kwargs['timeout'] = aiohttp.ClientTimeout(total=timeout)

        # Bodies are never logged: they may carry passwords or tokens
        self._logger.debug(f"{method} {path}")

        try:
            async with session.request(method, url, **kwargs) as response:
                status = response.status
                response_text = await response.text()
        except asyncio.TimeoutError as e:
            self._logger.warning(f"Timeout on {method} {path}")
            raise TransportError(f"Request timed out: {method} {path}") from e
        except aiohttp.ClientError as e:
            self._logger.warning(f"Network error on {method} {path}: {e}")
            raise TransportError(f"Network error: {e}") from e

        self._logger.debug(f"{method} {path} -> {status}")
        body = self._parse_response(response_text)

        if status >= 400:
            raise error_from_response(status, body, login=login)

        if not isinstance(body, dict):
            raise ProtocolError(
                f"Malformed response from {method} {path}",
                status=status
            )
        return body

    def _parse_response(self, response_text: str) -> Any:
        """Parse API response, falling back to the raw text."""
        if not response_text:
            return {}
        try:
            return json.loads(response_text)
        except json.JSONDecodeError:
            return response_text

    @staticmethod
    def _quote(value: str) -> str:
        """Quote an identifier for use as a path segment."""
        return quote(value, safe='')

    @staticmethod
    def new_txn_id() -> str:
        """Create a transaction id for a send request."""
        return f"mcli{uuid.uuid4().hex}"

    # Authentication

    async def login(
        self,
        username: str,
        password: str,
        device_name: Optional[str] = None,
        device_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Log in with a password.

        Args:
            username: Localpart or full user id
            password: Account password
            device_name: Initial device display name
            device_id: Existing device id to reuse

        Returns:
            Login response; access_token is also set on the client
        """
        payload: Dict[str, Any] = {
            'type': 'm.login.password',
            'identifier': {'type': 'm.id.user', 'user': username},
            'password': password,
        }
        if device_name:
            payload['initial_device_display_name'] = device_name
        if device_id:
            payload['device_id'] = device_id

        result = await self.request('POST', '/login', json_body=payload, auth=False, login=True)
        if not result.get('access_token') or not result.get('user_id'):
            raise ProtocolError("Login response is missing access_token or user_id")

        self.access_token = result['access_token']
        return result

    async def whoami(self) -> Dict[str, Any]:
        """Get the user id owning the current access token."""
        return await self.request('GET', '/account/whoami')

    async def logout(self) -> None:
        """Log out the current device."""
        try:
            await self.request('POST', '/logout', json_body={})
        finally:
            self.access_token = None

    # Sync

    async def sync(
        self,
        since: Optional[str] = None,
        timeout_ms: int = 0,
        full_state: bool = False,
        filter: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Perform one /sync request.

        Args:
            since: Cursor returned by the previous sync (None for initial sync)
            timeout_ms: Server-side long-poll wait; 0 returns immediately
            full_state: Ask for the full state of every room
            filter: Filter id or inline JSON filter

        Returns:
            Raw sync response
        """
        params: Dict[str, Any] = {
            'since': since,
            'timeout': str(timeout_ms),
            'filter': filter,
        }
        if full_state:
            params['full_state'] = 'true'

        # The client timeout has to outlive the server-side long-poll
        request_timeout = timeout_ms / 1000.0 + self._config.timeout.sock_read
        return await self.request('GET', '/sync', params=params, timeout=request_timeout)

    # Rooms

    async def create_room(
        self,
        name: Optional[str] = None,
        alias_localpart: Optional[str] = None,
        topic: Optional[str] = None,
        invite: Optional[List[str]] = None,
        public: bool = False
    ) -> str:
        """Create a room and return its id."""
        payload: Dict[str, Any] = {
            'preset': 'public_chat' if public else 'private_chat',
            'visibility': 'public' if public else 'private',
        }
        if name:
            payload['name'] = name
        if alias_localpart:
            payload['room_alias_name'] = alias_localpart
        if topic:
            payload['topic'] = topic
        if invite:
            payload['invite'] = list(invite)

        result = await self.request('POST', '/createRoom', json_body=payload)
        return result['room_id']

    async def join_room(self, room_id_or_alias: str, server_names: Optional[List[str]] = None) -> str:
        """Join a room by id or alias and return the room id."""
        result = await self.request(
            'POST',
            f"/join/{self._quote(room_id_or_alias)}",
            json_body={},
            params={'server_name': list(server_names or [])}
        )
        return result['room_id']

    async def leave_room(self, room_id: str) -> None:
        """Leave a room."""
        await self.request('POST', f"/rooms/{self._quote(room_id)}/leave", json_body={})

    async def invite_user(self, room_id: str, user_id: str) -> None:
        """Invite a user to a room."""
        await self.request(
            'POST',
            f"/rooms/{self._quote(room_id)}/invite",
            json_body={'user_id': user_id}
        )

    async def kick_user(self, room_id: str, user_id: str, reason: Optional[str] = None) -> None:
        """Kick a user from a room."""
        payload = {'user_id': user_id}
        if reason:
            payload['reason'] = reason
        await self.request('POST', f"/rooms/{self._quote(room_id)}/kick", json_body=payload)

    async def ban_user(self, room_id: str, user_id: str, reason: Optional[str] = None) -> None:
        """Ban a user from a room."""
        payload = {'user_id': user_id}
        if reason:
            payload['reason'] = reason
        await self.request('POST', f"/rooms/{self._quote(room_id)}/ban", json_body=payload)

    async def unban_user(self, room_id: str, user_id: str) -> None:
        """Lift a ban."""
        await self.request(
            'POST',
            f"/rooms/{self._quote(room_id)}/unban",
            json_body={'user_id': user_id}
        )

    async def send_message(
        self,
        room_id: str,
        body: str,
        msgtype: str = 'm.text',
        txn_id: Optional[str] = None
    ) -> str:
        """
        Send a message event to a room.

        Args:
            room_id: Target room id
            body: Plain text body
            msgtype: Message type (m.text, m.notice, m.emote)
            txn_id: Transaction id (generated if not provided)

        Returns:
            Event id of the sent message
        """
        txn_id = txn_id or self.new_txn_id()
        result = await self.request(
            'PUT',
            f"/rooms/{self._quote(room_id)}/send/m.room.message/{self._quote(txn_id)}",
            json_body={'msgtype': msgtype, 'body': body}
        )
        return result['event_id']

    # Directory

    async def create_alias(self, alias: str, room_id: str) -> None:
        """Map a room alias to a room id."""
        await self.request(
            'PUT',
            f"/directory/room/{self._quote(alias)}",
            json_body={'room_id': room_id}
        )

    async def resolve_alias(self, alias: str) -> Dict[str, Any]:
        """Resolve a room alias to {'room_id', 'servers'}."""
        return await self.request(
            'GET',
            f"/directory/room/{self._quote(alias)}",
            auth=False
        )

    # Profile

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        """Get displayname and avatar_url of a user."""
        return await self.request('GET', f"/profile/{self._quote(user_id)}")

    async def get_display_name(self, user_id: str) -> Optional[str]:
        """Get a user's display name (None when unset)."""
        result = await self.request('GET', f"/profile/{self._quote(user_id)}/displayname")
        return result.get('displayname')

    async def set_display_name(self, user_id: str, display_name: str) -> None:
        """Set the display name of the logged in user."""
        await self.request(
            'PUT',
            f"/profile/{self._quote(user_id)}/displayname",
            json_body={'displayname': display_name}
        )

    async def get_avatar_url(self, user_id: str) -> Optional[str]:
        """Get a user's avatar mxc:// URL (None when unset)."""
        result = await self.request('GET', f"/profile/{self._quote(user_id)}/avatar_url")
        return result.get('avatar_url')

    async def set_avatar_url(self, user_id: str, avatar_url: str) -> None:
        """Set the avatar of the logged in user."""
        await self.request(
            'PUT',
            f"/profile/{self._quote(user_id)}/avatar_url",
            json_body={'avatar_url': avatar_url}
        )

    # Media

    async def upload(self, data: bytes, content_type: str, filename: Optional[str] = None) -> str:
        """
        Upload content to the media repository.

        Args:
            data: File content
            content_type: MIME type
            filename: Optional file name

        Returns:
            mxc:// content URI
        """
        result = await self.request(
            'POST',
            '/upload',
            data=data,
            headers={'Content-Type': content_type},
            params={'filename': filename},
            api='media'
        )
        if 'content_uri' not in result:
            raise ProtocolError("Upload response is missing content_uri")
        return result['content_uri']
