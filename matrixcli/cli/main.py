"""Matrix CLI - Main commands."""
import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..client import MatrixClient
from ..commands import CommandDispatcher
from ..core.config import ClientConfig
from ..core.exceptions import MatrixCliError
from ..core.state import RoomState

T = TypeVar('T')

app = typer.Typer(
    name="matrix-cli",
    help="Use matrix-cli for simple matrix commands",
    add_completion=False,
    no_args_is_help=True
)
message_app = typer.Typer(help="Send and receive messages", no_args_is_help=True)
user_app = typer.Typer(help="Get or set user settings", no_args_is_help=True)
room_app = typer.Typer(help="Manage rooms", no_args_is_help=True)
app.add_typer(message_app, name="message")
app.add_typer(user_app, name="user")
app.add_typer(room_app, name="room")

console = Console()


def run_async(coro):
    """Run async function."""
    return asyncio.run(coro)


def run_command(ctx: typer.Context, action: Callable[[CommandDispatcher], Awaitable[T]]) -> T:
    """
    Authenticate, catch up, and run one dispatcher verb.

    MatrixCliError is printed in red and turned into the exit code of its
    category.
    """
    config: ClientConfig = ctx.obj

    async def runner():
        async with MatrixClient(config) as client:
            await client.engine.catch_up()
            return await action(client.commands)

    try:
        return run_async(runner())
    except MatrixCliError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(e.exit_code)


def print_rooms(rooms: List[RoomState]) -> None:
    """Print rooms as a table."""
    table = Table()
    table.add_column("Room")
    table.add_column("ID", style="cyan")
    table.add_column("Alias")

    for room in rooms:
        table.add_row(room.label, room.room_id, room.canonical_alias or "")

    console.print(table)


@app.callback()
def main_callback(
    ctx: typer.Context,
    homeserver_url: str = typer.Option(
        ..., "--homeserver-url", "-h", envvar="MATRIX_CLI_HOMESERVER_URL",
        help="This is your matrix homeserver: e.g. https://matrix.org"
    ),
    username: Optional[str] = typer.Option(
        None, "--username", "-u", envvar="MATRIX_CLI_USERNAME",
        help="Your matrix username"
    ),
    password: Optional[str] = typer.Option(
        None, "--password", "-p", envvar="MATRIX_CLI_PASSWORD",
        help="Your matrix password"
    ),
    session_file: Optional[Path] = typer.Option(
        None, "--session-file", "-s", envvar="MATRIX_CLI_SESSION_FILE",
        help="Use or store the session information here"
    ),
    store_path: Optional[Path] = typer.Option(
        None, "--store-path", envvar="MATRIX_CLI_STORE_PATH",
        help="Store state information here"
    ),
    force_login: bool = typer.Option(
        False, "--force-login",
        help="Ignore an existing session file and log in again"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Use matrix-cli for simple matrix commands."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    ctx.obj = ClientConfig.create(
        homeserver_url,
        username=username,
        password=password,
        session_file=session_file,
        store_path=store_path,
        force_login=force_login,
    )


# =============================================================================
# message
# =============================================================================

@message_app.command("send")
def message_send(
    ctx: typer.Context,
    room: str = typer.Argument(..., metavar="ROOM", help="Room name or ID"),
    msg: str = typer.Argument(..., metavar="MSG", help="Message to send (plain text)"),
):
    """Send a plain text message to a room."""
    event_id = run_command(ctx, lambda commands: commands.send_message(room, msg))
    console.print(f"[green]Sent:[/green] {event_id}")


@message_app.command("listen")
def message_listen(
    ctx: typer.Context,
    room: str = typer.Argument(..., metavar="ROOM", help="Room name or ID"),
):
    """Listen for messages in a room."""

    async def listen(commands: CommandDispatcher):
        console.print(f"Listening to room {room}, Ctrl-C to stop")
        async for message in commands.messages(room):
            console.print(f"From: {escape(message.sender)}")
            console.print(f"Date: {message.timestamp:%Y-%m-%d %H:%M:%S %Z}")
            console.print(f"Message: {escape(message.body)}\n")

    try:
        run_command(ctx, listen)
    except KeyboardInterrupt:
        console.print("Exiting.")


# =============================================================================
# user
# =============================================================================

@user_app.command("get-display-name")
def user_get_display_name(ctx: typer.Context):
    """Gets the users display name."""
    name = run_command(ctx, lambda commands: commands.get_display_name())
    if name is None:
        console.print("Display Name Not Set")
    else:
        console.print(escape(name))


@user_app.command("set-display-name")
def user_set_display_name(
    ctx: typer.Context,
    name: str = typer.Argument(..., metavar="NAME"),
):
    """Set the users display name."""
    run_command(ctx, lambda commands: commands.set_display_name(name))
    console.print(f"[green]Display name set:[/green] {escape(name)}")


@user_app.command("get-avatar-url")
def user_get_avatar_url(ctx: typer.Context):
    """Get the current avatar url."""
    url = run_command(ctx, lambda commands: commands.get_avatar_url())
    if url is None:
        console.print("Avatar Not Set")
    else:
        console.print(url)


@user_app.command("set-avatar")
def user_set_avatar(
    ctx: typer.Context,
    file: Path = typer.Argument(..., metavar="FILE", exists=True, dir_okay=False),
):
    """Upload the provided image and set it as the users avatar."""
    url = run_command(ctx, lambda commands: commands.set_avatar(file))
    console.print(f"[green]Avatar set:[/green] {url}")


@user_app.command("get-profile")
def user_get_profile(
    ctx: typer.Context,
    user: Optional[str] = typer.Argument(None, metavar="USER", help="User id (default: yourself)"),
):
    """Show display name and avatar of a user."""
    profile = run_command(ctx, lambda commands: commands.get_profile(user))
    console.print(f"[bold]Display name:[/bold] {escape(profile.get('displayname') or '-')}")
    console.print(f"[bold]Avatar:[/bold] {profile.get('avatar_url') or '-'}")


@user_app.command("invited-rooms")
def user_invited_rooms(ctx: typer.Context):
    """List the rooms a user is invited to."""
    print_rooms(run_command(ctx, lambda commands: commands.invited_rooms()))


@user_app.command("joined-rooms")
def user_joined_rooms(ctx: typer.Context):
    """List the rooms a user is currently in."""
    print_rooms(run_command(ctx, lambda commands: commands.joined_rooms()))


@user_app.command("left-rooms")
def user_left_rooms(ctx: typer.Context):
    """List the rooms a user has left."""
    print_rooms(run_command(ctx, lambda commands: commands.left_rooms()))


# =============================================================================
# room
# =============================================================================

@room_app.command("create")
def room_create(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Room name"),
    alias: Optional[str] = typer.Option(None, "--alias", "-a", help="Alias localpart"),
    topic: Optional[str] = typer.Option(None, "--topic", "-t", help="Room topic"),
    invite: Optional[List[str]] = typer.Option(None, "--invite", "-i", help="User id to invite (repeatable)"),
    public: bool = typer.Option(False, "--public", help="Create a public room"),
):
    """Create a matrix room."""
    room_id = run_command(
        ctx,
        lambda commands: commands.create_room(
            name=name, alias=alias, topic=topic, invite=invite or None, public=public
        )
    )
    console.print(f"[green]Created room:[/green] {room_id}")


@room_app.command("join")
def room_join(
    ctx: typer.Context,
    room: str = typer.Argument(..., metavar="ROOM", help="Room name or ID"),
):
    """Join a matrix room."""
    room_id = run_command(ctx, lambda commands: commands.join_room(room))
    console.print(f"[green]Joined:[/green] {room_id}")


@room_app.command("leave")
def room_leave(
    ctx: typer.Context,
    room: str = typer.Argument(..., metavar="ROOM", help="Room name or ID"),
):
    """Leave a matrix room."""
    room_id = run_command(ctx, lambda commands: commands.leave_room(room))
    console.print(f"[green]Left:[/green] {room_id}")


@room_app.command("invite")
def room_invite(
    ctx: typer.Context,
    room: str = typer.Argument(..., metavar="ROOM"),
    user: str = typer.Argument(..., metavar="USER"),
):
    """Invite a user to a room."""
    run_command(ctx, lambda commands: commands.invite(room, user))
    console.print(f"[green]Invited:[/green] {escape(user)}")


@room_app.command("kick")
def room_kick(
    ctx: typer.Context,
    room: str = typer.Argument(..., metavar="ROOM"),
    user: str = typer.Argument(..., metavar="USER"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r"),
):
    """Kick a user from a room."""
    run_command(ctx, lambda commands: commands.kick(room, user, reason))
    console.print(f"[green]Kicked:[/green] {escape(user)}")


@room_app.command("ban")
def room_ban(
    ctx: typer.Context,
    room: str = typer.Argument(..., metavar="ROOM"),
    user: str = typer.Argument(..., metavar="USER"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r"),
):
    """Ban a user from a room."""
    run_command(ctx, lambda commands: commands.ban(room, user, reason))
    console.print(f"[green]Banned:[/green] {escape(user)}")


@room_app.command("unban")
def room_unban(
    ctx: typer.Context,
    room: str = typer.Argument(..., metavar="ROOM"),
    user: str = typer.Argument(..., metavar="USER"),
):
    """Lift a ban."""
    run_command(ctx, lambda commands: commands.unban(room, user))
    console.print(f"[green]Unbanned:[/green] {escape(user)}")


@room_app.command("create-alias")
def room_create_alias(
    ctx: typer.Context,
    alias: str = typer.Argument(..., metavar="ALIAS"),
    room: str = typer.Argument(..., metavar="ROOM"),
):
    """Create an alias for a room."""
    full_alias = run_command(ctx, lambda commands: commands.create_alias(alias, room))
    console.print(f"[green]Alias created:[/green] {full_alias}")


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
