"""Pytest fixtures for matrixcli tests."""
import pytest

from matrixcli.core.config import ClientConfig, SyncConfig
from matrixcli.core.session import Identity, Session
from matrixcli.core.state import StateCache

from tests.fakes import HOMESERVER, PASSWORD, USER_ID, FakeHomeserver, RecordingBackoff


@pytest.fixture
def fake_server():
    """Fresh fake homeserver."""
    return FakeHomeserver()


@pytest.fixture
def logged_in_server(fake_server):
    """Fake homeserver with an authenticated access token."""
    fake_server.valid_tokens['syt_test_token'] = 'TESTDEVICE'
    fake_server.access_token = 'syt_test_token'
    return fake_server


@pytest.fixture
def identity():
    return Identity(homeserver_url=HOMESERVER, user_id=USER_ID)


@pytest.fixture
def session():
    return Session(
        homeserver_url=HOMESERVER,
        user_id=USER_ID,
        device_id='DEVICEID',
        access_token='syt_secret_token',
    )


@pytest.fixture
def cache(identity):
    """In-memory state cache."""
    with StateCache(None, identity) as state_cache:
        yield state_cache


@pytest.fixture
def backoff():
    return RecordingBackoff()


@pytest.fixture
def sync_config():
    return SyncConfig(long_poll_timeout_ms=1000, max_retries=3, queue_size=10)


@pytest.fixture
def client_config(tmp_path):
    """Client configuration with files under tmp_path."""
    return ClientConfig(
        homeserver_url=HOMESERVER,
        username='alice',
        password=PASSWORD,
        session_file=tmp_path / 'session.json',
        store_path=tmp_path / 'store',
    )
