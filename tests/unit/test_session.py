"""
Unit tests for session management.

Tests Session, JSONSessionFile, MemorySession and SessionStore.
"""
import json
from datetime import datetime
from unittest.mock import patch

import pytest

from matrixcli.core.exceptions import (
    AuthError,
    SessionNotFoundError,
    StateCorruption,
)
from matrixcli.core.session import (
    Identity,
    JSONSessionFile,
    MemorySession,
    PasswordCredential,
    Session,
    SessionStorage,
    SessionStore,
    TokenCredential,
)

from tests.fakes import HOMESERVER, PASSWORD, USER_ID


class TestSession:
    """Tests for the Session model."""

    def test_to_dict_contains_wire_fields(self, session):
        """Test the persisted JSON shape."""
        result = session.to_dict()

        assert result['homeserver_url'] == HOMESERVER
        assert result['user_id'] == USER_ID
        assert result['device_id'] == 'DEVICEID'
        assert result['access_token'] == 'syt_secret_token'
        assert result['refresh_token'] is None
        assert 'created_at' in result

    def test_json_round_trip_keeps_created_at(self, session):
        """Test JSON deserialization of a serialized session."""
        restored = Session.from_json(session.to_json())

        assert restored == session
        assert restored.created_at.tzinfo is not None

    def test_from_dict_without_created_at(self):
        """Test files written without created_at still load."""
        data = Session.from_dict({
            'homeserver_url': HOMESERVER,
            'user_id': USER_ID,
            'device_id': 'DEV',
            'access_token': 'tok',
            'refresh_token': None,
        })

        assert data.user_id == USER_ID
        assert isinstance(data.created_at, datetime)

    @pytest.mark.parametrize('missing', ['homeserver_url', 'user_id', 'device_id', 'access_token'])
    def test_from_dict_requires_fields(self, session, missing):
        """Test every required field is checked."""
        data = session.to_dict()
        del data[missing]

        with pytest.raises(ValueError, match=missing):
            Session.from_dict(data)

    def test_from_dict_requires_full_user_id(self, session):
        data = session.to_dict()
        data['user_id'] = 'alice'

        with pytest.raises(ValueError, match='user_id'):
            Session.from_dict(data)

    def test_repr_hides_tokens(self, session):
        """Test tokens never appear in repr."""
        session.refresh_token = 'refresh_secret'

        assert 'syt_secret_token' not in repr(session)
        assert 'refresh_secret' not in repr(session)

    def test_identity_and_credential(self, session):
        """Test derived identity and token credential."""
        assert session.identity == Identity(HOMESERVER, USER_ID)
        assert session.credential == TokenCredential('syt_secret_token', 'DEVICEID')

    def test_password_not_in_repr(self):
        """Test the password credential hides the password."""
        assert PASSWORD not in repr(PasswordCredential('alice', PASSWORD))


class TestIdentity:
    """Tests for Identity."""

    def test_server_name(self, identity):
        assert identity.server_name == 'example.org'

    def test_store_key_is_filesystem_safe(self):
        key = Identity('https://matrix.example.org:8448/', '@bob/..:example.org').store_key

        assert '/' not in key
        assert ':' not in key
        assert key.endswith('matrix.example.org')

    def test_store_key_differs_per_identity(self):
        a = Identity(HOMESERVER, '@alice:example.org')
        b = Identity(HOMESERVER, '@bob:example.org')

        assert a.store_key != b.store_key


class TestMemorySession:
    """Tests for MemorySession."""

    def test_implements_protocol(self):
        assert isinstance(MemorySession(), SessionStorage)

    def test_save_load_delete(self, session):
        storage = MemorySession()

        assert storage.load() is None
        assert storage.exists() is False

        storage.save(session)
        assert storage.load() is session
        assert storage.exists() is True

        storage.delete()
        assert storage.load() is None


class TestJSONSessionFile:
    """Tests for JSONSessionFile."""

    def test_implements_protocol(self, tmp_path):
        assert isinstance(JSONSessionFile(tmp_path / 's.json'), SessionStorage)

    def test_missing_file_loads_none(self, tmp_path):
        """Test absence is not an error."""
        assert JSONSessionFile(tmp_path / 'absent.json').load() is None

    def test_save_and_load(self, tmp_path, session):
        path = tmp_path / 'nested' / 'session.json'
        storage = JSONSessionFile(path)

        storage.save(session)

        assert path.exists()
        assert json.loads(path.read_text())['access_token'] == 'syt_secret_token'
        assert storage.load() == session

    def test_save_leaves_no_temp_files(self, tmp_path, session):
        JSONSessionFile(tmp_path / 'session.json').save(session)

        assert [p.name for p in tmp_path.iterdir()] == ['session.json']

    def test_save_is_owner_only(self, tmp_path, session):
        path = tmp_path / 'session.json'
        JSONSessionFile(path).save(session)

        assert (path.stat().st_mode & 0o077) == 0

    def test_corrupt_file_raises(self, tmp_path):
        """Test a parse failure is reported, not treated as no session."""
        path = tmp_path / 'session.json'
        path.write_text('{"user_id": "@alice:exa')

        with pytest.raises(StateCorruption) as exc_info:
            JSONSessionFile(path).load()

        assert exc_info.value.path == path
        assert 'Remove or reset' in str(exc_info.value)

    def test_incomplete_file_raises(self, tmp_path):
        path = tmp_path / 'session.json'
        path.write_text(json.dumps({'user_id': USER_ID}))

        with pytest.raises(StateCorruption):
            JSONSessionFile(path).load()

    def test_localpart_user_id_raises(self, tmp_path, session):
        path = tmp_path / 'session.json'
        path.write_text(json.dumps({**session.to_dict(), 'user_id': 'alice'}))

        with pytest.raises(StateCorruption):
            JSONSessionFile(path).load()

    def test_directory_raises(self, tmp_path):
        with pytest.raises(StateCorruption):
            JSONSessionFile(tmp_path).load()

    def test_failed_write_keeps_old_file(self, tmp_path, session):
        """Test an interrupted write leaves the previous valid file."""
        path = tmp_path / 'session.json'
        storage = JSONSessionFile(path)
        storage.save(session)
        before = path.read_bytes()

        newer = Session(HOMESERVER, USER_ID, 'DEV2', 'syt_newer_token')
        with patch('matrixcli.core.session.file_session.os.fsync', side_effect=OSError('disk full')):
            with pytest.raises(OSError):
                storage.save(newer)

        assert path.read_bytes() == before
        assert storage.load() == session
        assert [p.name for p in tmp_path.iterdir()] == ['session.json']

    def test_failed_rename_on_first_write_leaves_nothing(self, tmp_path, session):
        path = tmp_path / 'session.json'
        with patch('matrixcli.core.session.file_session.os.replace', side_effect=OSError('boom')):
            with pytest.raises(OSError):
                JSONSessionFile(path).save(session)

        assert not path.exists()
        assert list(tmp_path.iterdir()) == []

    def test_delete(self, tmp_path, session):
        path = tmp_path / 'session.json'
        storage = JSONSessionFile(path)
        storage.save(session)

        storage.delete()
        storage.delete()

        assert not path.exists()


class TestSessionStore:
    """Tests for SessionStore."""

    def test_load_missing_raises_not_found(self, fake_server, tmp_path):
        store = SessionStore(fake_server)

        with pytest.raises(SessionNotFoundError):
            store.load(tmp_path / 'session.json')

    @pytest.mark.asyncio
    async def test_password_login(self, fake_server, identity):
        store = SessionStore(fake_server)

        session = await store.authenticate(identity, PasswordCredential('alice', PASSWORD))

        assert session.user_id == USER_ID
        assert session.access_token in fake_server.valid_tokens
        assert session.device_id == fake_server.valid_tokens[session.access_token]

    @pytest.mark.asyncio
    async def test_password_login_rejected(self, fake_server, identity):
        store = SessionStore(fake_server)

        with pytest.raises(AuthError):
            await store.authenticate(identity, PasswordCredential('alice', 'wrong'))

        assert fake_server.login_calls == 1

    @pytest.mark.asyncio
    async def test_token_login_verifies_with_whoami(self, logged_in_server, identity):
        store = SessionStore(logged_in_server)

        session = await store.authenticate(identity, TokenCredential('syt_test_token'))

        assert session.user_id == USER_ID
        assert session.device_id == 'TESTDEVICE'

    @pytest.mark.asyncio
    async def test_token_login_rejected(self, fake_server, identity):
        store = SessionStore(fake_server)

        with pytest.raises(AuthError) as exc_info:
            await store.authenticate(identity, TokenCredential('revoked', 'DEV'))

        assert exc_info.value.error_code == 'M_UNKNOWN_TOKEN'

    @pytest.mark.asyncio
    async def test_token_for_other_user_rejected(self, logged_in_server):
        store = SessionStore(logged_in_server)
        other = Identity(HOMESERVER, '@mallory:example.org')

        with pytest.raises(AuthError):
            await store.authenticate(other, TokenCredential('syt_test_token'))

    @pytest.mark.asyncio
    async def test_unknown_credential_type(self, fake_server, identity):
        with pytest.raises(TypeError):
            await SessionStore(fake_server).authenticate(identity, object())

    def test_persist_and_invalidate(self, fake_server, session, tmp_path):
        path = tmp_path / 'session.json'
        store = SessionStore(fake_server)

        store.persist(session, path)
        assert store.load(path) == session

        store.invalidate(path)
        assert not path.exists()

    def test_persist_without_path_stays_in_memory(self, fake_server, session, tmp_path):
        store = SessionStore(fake_server)

        store.persist(session, None)

        assert store.storage_for(None).load() is session
        assert list(tmp_path.iterdir()) == []
