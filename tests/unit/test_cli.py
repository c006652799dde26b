"""Tests for the typer command line."""
import pytest
from typer.testing import CliRunner

from matrixcli import MatrixClient
from matrixcli.cli.main import app
from matrixcli.core.exceptions import AuthError

from tests.fakes import HOMESERVER, PASSWORD

runner = CliRunner()


@pytest.fixture
def server(fake_server, monkeypatch):
    """Route every CLI client to the fake homeserver."""
    monkeypatch.setattr(
        'matrixcli.cli.main.MatrixClient',
        lambda config: MatrixClient(config, api=fake_server)
    )
    return fake_server


@pytest.fixture
def options(tmp_path):
    return [
        '-h', HOMESERVER,
        '-u', 'alice',
        '-p', PASSWORD,
        '-s', str(tmp_path / 'session.json'),
        '--store-path', str(tmp_path / 'store'),
    ]


def invoke(options, *args):
    return runner.invoke(app, [*options, *args])


class TestUser:
    """Tests for the user commands."""

    def test_display_name_not_set(self, server, options):
        result = invoke(options, 'user', 'get-display-name')

        assert result.exit_code == 0
        assert 'Display Name Not Set' in result.output

    def test_set_then_get_display_name(self, server, options):
        assert invoke(options, 'user', 'set-display-name', 'Alice').exit_code == 0

        result = invoke(options, 'user', 'get-display-name')

        assert result.output.strip().splitlines()[-1] == 'Alice'
        # the second run resumed the stored session
        assert server.login_calls == 1

    def test_avatar_not_set(self, server, options):
        result = invoke(options, 'user', 'get-avatar-url')

        assert 'Avatar Not Set' in result.output

    def test_set_avatar(self, server, options, tmp_path):
        image = tmp_path / 'me.png'
        image.write_bytes(b'\x89PNG')

        result = invoke(options, 'user', 'set-avatar', str(image))

        assert result.exit_code == 0
        assert 'mxc://example.org/' in result.output
        assert server.uploads[0][1] == 'image/png'

    def test_set_avatar_missing_file(self, server, options, tmp_path):
        result = invoke(options, 'user', 'set-avatar', str(tmp_path / 'missing.png'))

        assert result.exit_code == 2
        assert server.uploads == []

    def test_joined_rooms_table(self, server, options):
        room_id = server.add_room(name='Ops', alias='#ops:example.org')

        result = invoke(options, 'user', 'joined-rooms')

        assert result.exit_code == 0
        assert room_id in result.output
        assert '#ops:example.org' in result.output
        assert 'Ops' in result.output

    def test_unnamed_room_is_labelled_by_alias(self, server, options):
        server.add_room(alias='#ops:example.org')

        result = invoke(options, 'user', 'joined-rooms')

        assert result.exit_code == 0
        assert result.output.count('#ops:example.org') == 2

    def test_invited_rooms_table(self, server, options):
        server.add_room(name='Joined')
        room_id = server.invite_self('Secret')

        result = invoke(options, 'user', 'invited-rooms')

        assert room_id in result.output
        assert 'Joined' not in result.output


class TestRoom:
    """Tests for the room commands."""

    def test_create(self, server, options):
        result = invoke(options, 'room', 'create', '--name', 'Ops', '--alias', 'ops', '-i', '@bob:example.org')

        assert result.exit_code == 0
        assert 'Created room:' in result.output
        assert '#ops:example.org' in server.aliases

    def test_join_unknown_alias(self, server, options):
        result = invoke(options, 'room', 'join', '#nowhere:example.org')

        assert result.exit_code == 6
        assert 'Error:' in result.output

    def test_invalid_user_id(self, server, options):
        room_id = server.add_room()

        result = invoke(options, 'room', 'invite', room_id, 'bob')

        assert result.exit_code == 1
        assert 'Invalid user id' in result.output

    def test_create_alias(self, server, options):
        room_id = server.add_room(name='Ops')

        result = invoke(options, 'room', 'create-alias', 'ops', 'Ops')

        assert result.exit_code == 0
        assert server.aliases['#ops:example.org'] == room_id


class TestMessage:
    """Tests for the message commands."""

    def test_send(self, server, options):
        room_id = server.add_room(name='Ops')

        result = invoke(options, 'message', 'send', 'Ops', 'hello')

        assert result.exit_code == 0
        assert server.sent == [(room_id, 'hello', 'm.text')]

    def test_send_to_room_not_joined(self, server, options):
        room_id = server.invite_self('Secret')

        result = invoke(options, 'message', 'send', room_id, 'hello')

        assert result.exit_code == 1
        assert 'Not joined' in result.output
        assert server.sent == []

    def test_listen_prints_messages(self, server, options):
        room_id = server.add_room(name='Ops')
        server.on_long_poll.extend([
            lambda: server.inject_message(room_id, '@bob:example.org', 'hi'),
            lambda: server.long_poll_failures.append(
                AuthError('Token revoked', error_code='M_UNKNOWN_TOKEN')
            ),
        ])

        result = invoke(options, 'message', 'listen', 'Ops')

        assert 'Listening to room Ops, Ctrl-C to stop' in result.output
        assert 'From: @bob:example.org' in result.output
        assert 'Date: 2023-11-14' in result.output
        assert 'Message: hi' in result.output
        assert result.exit_code == 3


class TestErrors:
    """Tests for configuration and authentication failures."""

    def test_incomplete_credentials(self, server, tmp_path):
        result = runner.invoke(app, ['-h', HOMESERVER, '-u', 'alice', 'user', 'get-display-name'])

        assert result.exit_code == 2
        assert 'password' in result.output
        assert server.login_calls == 0

    def test_wrong_password(self, server, tmp_path):
        result = runner.invoke(app, [
            '-h', HOMESERVER, '-u', 'alice', '-p', 'wrong',
            '-s', str(tmp_path / 'session.json'), 'user', 'get-display-name'
        ])

        assert result.exit_code == 3
        assert 'wrong' not in result.output
        assert not (tmp_path / 'session.json').exists()

    def test_homeserver_from_environment(self, server, options, monkeypatch):
        monkeypatch.setenv('MATRIX_CLI_HOMESERVER_URL', HOMESERVER)

        result = runner.invoke(app, [*options[2:], 'user', 'get-display-name'])

        assert result.exit_code == 0
