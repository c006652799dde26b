"""Tests for the async Matrix API client."""
import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from matrixcli.core.api import (
    APIConfig,
    AsyncAPIClient,
    MatrixAPIError,
    ProtocolClient,
    ProxyConfig,
    SSLConfig,
)
from matrixcli.core.exceptions import (
    AuthError,
    ProtocolError,
    RateLimitedError,
    ServerError,
    TransportError,
)


def mock_response(status=200, body=None):
    """Async context manager yielding a response with the given status and body."""
    response = MagicMock()
    response.status = status
    text = body if isinstance(body, str) else json.dumps(body if body is not None else {})
    response.text = AsyncMock(return_value=text)
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=None)
    return ctx


@pytest.fixture
def http():
    """Mock aiohttp session."""
    session = MagicMock()
    session.request = MagicMock(return_value=mock_response(200, {}))
    return session


@pytest.fixture
def client(http):
    client = AsyncAPIClient(APIConfig(homeserver='https://matrix.example.org/'), access_token='syt_abc')
    client._ensure_session = AsyncMock(return_value=http)
    return client


def sent(http, index=-1):
    """(method, url, kwargs) of a recorded request."""
    call = http.request.call_args_list[index]
    return call.args[0], call.args[1], call.kwargs


class TestConfig:
    """Tests for URL building."""

    def test_implements_protocol_client(self):
        assert isinstance(AsyncAPIClient(), ProtocolClient)

    def test_api_prefixes(self):
        config = APIConfig(homeserver='https://matrix.example.org/')

        assert config.client_api_url == 'https://matrix.example.org/_matrix/client/v3'
        assert config.media_api_url == 'https://matrix.example.org/_matrix/media/v3'

    def test_proxy_credentials(self):
        proxy = ProxyConfig(url='http://proxy.local:8080', username='u', password='p')

        assert proxy.to_aiohttp_proxy() == 'http://u:p@proxy.local:8080'
        assert 'password' not in repr(proxy)

    def test_no_proxy(self):
        assert ProxyConfig().to_aiohttp_proxy() is None

    def test_verification_disabled(self):
        assert SSLConfig(verify=False).create_ssl_context() is False

    def test_session_headers(self):
        config = APIConfig(user_agent='test/1.0', extra_headers={'X-Trace': '1'})

        headers = config.get_session_kwargs()['headers']

        assert headers == {'User-Agent': 'test/1.0', 'X-Trace': '1'}


class TestRequests:
    """Tests for the request shapes of the protocol verbs."""

    @pytest.mark.asyncio
    async def test_login(self, client, http):
        client.access_token = None
        http.request.return_value = mock_response(200, {
            'user_id': '@alice:matrix.example.org',
            'access_token': 'syt_new',
            'device_id': 'ABCDEF',
        })

        result = await client.login('alice', 'secret', device_name='matrix-cli')

        method, url, kwargs = sent(http)
        assert method == 'POST'
        assert url == 'https://matrix.example.org/_matrix/client/v3/login'
        assert kwargs['json'] == {
            'type': 'm.login.password',
            'identifier': {'type': 'm.id.user', 'user': 'alice'},
            'password': 'secret',
            'initial_device_display_name': 'matrix-cli',
        }
        assert 'Authorization' not in kwargs['headers']
        assert result['device_id'] == 'ABCDEF'
        assert client.access_token == 'syt_new'

    @pytest.mark.asyncio
    async def test_login_without_token_is_protocol_error(self, client, http):
        http.request.return_value = mock_response(200, {'user_id': '@alice:matrix.example.org'})

        with pytest.raises(ProtocolError):
            await client.login('alice', 'secret')

    @pytest.mark.asyncio
    async def test_bearer_token(self, client, http):
        http.request.return_value = mock_response(200, {'user_id': '@alice:matrix.example.org'})

        await client.whoami()

        method, url, kwargs = sent(http)
        assert url.endswith('/account/whoami')
        assert kwargs['headers']['Authorization'] == 'Bearer syt_abc'

    @pytest.mark.asyncio
    async def test_sync_params(self, client, http):
        http.request.return_value = mock_response(200, {'next_batch': 's2'})

        await client.sync(since='s1', timeout_ms=30000, full_state=False)

        method, url, kwargs = sent(http)
        assert method == 'GET'
        assert url.endswith('/sync')
        assert kwargs['params'] == [('since', 's1'), ('timeout', '30000')]
        assert kwargs['timeout'].total == 30.0 + client.config.timeout.sock_read

    @pytest.mark.asyncio
    async def test_initial_sync_params(self, client, http):
        http.request.return_value = mock_response(200, {'next_batch': 's1'})

        await client.sync(full_state=True, filter='{"room":{"timeline":{"limit":10}}}')

        _, _, kwargs = sent(http)
        params = dict(kwargs['params'])
        assert 'since' not in params
        assert params['full_state'] == 'true'
        assert params['timeout'] == '0'
        assert params['filter'] == '{"room":{"timeline":{"limit":10}}}'

    @pytest.mark.asyncio
    async def test_join_passes_server_names(self, client, http):
        http.request.return_value = mock_response(200, {'room_id': '!r:example.org'})

        room_id = await client.join_room('#ops:example.org', server_names=['example.org', 'other.org'])

        _, url, kwargs = sent(http)
        assert room_id == '!r:example.org'
        assert url.endswith('/join/%23ops%3Aexample.org')
        assert kwargs['params'] == [('server_name', 'example.org'), ('server_name', 'other.org')]

    @pytest.mark.asyncio
    async def test_send_message(self, client, http):
        http.request.return_value = mock_response(200, {'event_id': '$ev1'})

        event_id = await client.send_message('!room:example.org', 'hello', txn_id='txn1')

        method, url, kwargs = sent(http)
        assert event_id == '$ev1'
        assert method == 'PUT'
        assert url.endswith('/rooms/%21room%3Aexample.org/send/m.room.message/txn1')
        assert kwargs['json'] == {'msgtype': 'm.text', 'body': 'hello'}

    @pytest.mark.asyncio
    async def test_send_message_generates_transaction_ids(self, client, http):
        http.request.return_value = mock_response(200, {'event_id': '$ev'})

        await client.send_message('!room:example.org', 'a')
        http.request.return_value = mock_response(200, {'event_id': '$ev'})
        await client.send_message('!room:example.org', 'b')

        first = sent(http, 0)[1].rsplit('/', 1)[1]
        second = sent(http, 1)[1].rsplit('/', 1)[1]
        assert first != second

    @pytest.mark.asyncio
    async def test_create_room(self, client, http):
        http.request.return_value = mock_response(200, {'room_id': '!new:example.org'})

        room_id = await client.create_room(
            name='Ops', alias_localpart='ops', topic='On call',
            invite=['@bob:example.org'], public=True
        )

        _, url, kwargs = sent(http)
        assert room_id == '!new:example.org'
        assert url.endswith('/createRoom')
        assert kwargs['json'] == {
            'preset': 'public_chat',
            'visibility': 'public',
            'name': 'Ops',
            'room_alias_name': 'ops',
            'topic': 'On call',
            'invite': ['@bob:example.org'],
        }

    @pytest.mark.asyncio
    async def test_upload_uses_media_api(self, client, http):
        http.request.return_value = mock_response(200, {'content_uri': 'mxc://example.org/abc'})

        uri = await client.upload(b'\x89PNG', 'image/png', filename='me.png')

        method, url, kwargs = sent(http)
        assert uri == 'mxc://example.org/abc'
        assert url == 'https://matrix.example.org/_matrix/media/v3/upload'
        assert kwargs['data'] == b'\x89PNG'
        assert kwargs['headers']['Content-Type'] == 'image/png'
        assert kwargs['params'] == [('filename', 'me.png')]

    @pytest.mark.asyncio
    async def test_resolve_alias_is_unauthenticated(self, client, http):
        http.request.return_value = mock_response(200, {'room_id': '!r:example.org', 'servers': []})

        await client.resolve_alias('#ops:example.org')

        _, _, kwargs = sent(http)
        assert 'Authorization' not in kwargs['headers']

    @pytest.mark.asyncio
    async def test_logout_clears_token(self, client, http):
        await client.logout()

        assert client.access_token is None


class TestErrors:
    """Tests for error mapping of responses and network failures."""

    @pytest.mark.asyncio
    async def test_unknown_token(self, client, http):
        http.request.return_value = mock_response(401, {
            'errcode': 'M_UNKNOWN_TOKEN', 'error': 'Invalid access token passed.', 'soft_logout': True
        })

        with pytest.raises(AuthError) as exc_info:
            await client.whoami()

        assert exc_info.value.error_code == 'M_UNKNOWN_TOKEN'
        assert exc_info.value.soft_logout is True

    @pytest.mark.asyncio
    async def test_bad_password(self, client, http):
        http.request.return_value = mock_response(403, {'errcode': 'M_FORBIDDEN', 'error': 'Invalid password'})

        with pytest.raises(AuthError):
            await client.login('alice', 'wrong')

    @pytest.mark.asyncio
    async def test_forbidden_outside_login_is_protocol_error(self, client, http):
        http.request.return_value = mock_response(403, {
            'errcode': 'M_FORBIDDEN', 'error': 'You are not invited to this room.'
        })

        with pytest.raises(MatrixAPIError) as exc_info:
            await client.join_room('!secret:example.org')

        assert exc_info.value.status == 403
        assert 'You are not invited to this room.' in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rate_limited(self, client, http):
        http.request.return_value = mock_response(429, {
            'errcode': 'M_LIMIT_EXCEEDED', 'error': 'Too many requests', 'retry_after_ms': 2000
        })

        with pytest.raises(RateLimitedError) as exc_info:
            await client.sync()

        assert exc_info.value.retry_after_ms == 2000

    @pytest.mark.asyncio
    async def test_server_error_with_html_body(self, client, http):
        http.request.return_value = mock_response(502, '<html>Bad Gateway</html>')

        with pytest.raises(ServerError) as exc_info:
            await client.sync()

        assert exc_info.value.status == 502

    @pytest.mark.asyncio
    @pytest.mark.parametrize('failure', [
        aiohttp.ClientConnectionError('Connection refused'),
        asyncio.TimeoutError(),
    ])
    async def test_network_failures_are_transport_errors(self, client, http, failure):
        http.request.side_effect = failure

        with pytest.raises(TransportError):
            await client.sync(since='s1')

        assert http.request.call_count == 1

    @pytest.mark.asyncio
    async def test_non_object_body(self, client, http):
        http.request.return_value = mock_response(200, '[1, 2, 3]')

        with pytest.raises(ProtocolError):
            await client.whoami()

    @pytest.mark.asyncio
    async def test_closed_client(self, client):
        await client.close()

        with pytest.raises(TransportError):
            await client.whoami()

    @pytest.mark.asyncio
    async def test_password_never_logged(self, client, http, caplog):
        http.request.return_value = mock_response(200, {
            'user_id': '@alice:matrix.example.org', 'access_token': 'syt_new', 'device_id': 'D'
        })

        with caplog.at_level(logging.DEBUG, logger='matrixcli.api'):
            await client.login('alice', 'hunter2')

        assert 'POST /login' in caplog.text
        assert 'hunter2' not in caplog.text
        assert 'syt_new' not in caplog.text
