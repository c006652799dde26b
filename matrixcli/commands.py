"""
Command dispatcher.

One method per user-facing verb. Mutating verbs go straight to the
protocol client and are sent exactly once; the local view only changes
when the effect comes back through the next sync.
"""
import mimetypes
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import aiofiles

from .core.api.protocols import ProtocolClient
from .core.exceptions import CommandError, ProtocolError, TransportError
from .core.logging import get_logger
from .core.session import Identity
from .core.state import Membership, MessageEvent, RoomState, StateCache
from .core.sync import SyncEngine


class CommandDispatcher:
    """
    Maps verbs onto protocol calls plus sync refreshes.

    Args:
        api: Authenticated protocol client
        engine: Sync engine of the same account
        cache: State cache read by the query verbs
        identity: Authenticated identity (full user id)
        refresh: Run a catch-up after every successful mutating verb

    Example:
        >>> room_id = await dispatcher.create_room(name="Ops")
        >>> await dispatcher.send_message(room_id, "hello")
    """

    def __init__(
        self,
        api: ProtocolClient,
        engine: SyncEngine,
        cache: StateCache,
        identity: Identity,
        refresh: bool = True
    ):
        self._api = api
        self._engine = engine
        self._cache = cache
        self._identity = identity
        self._refresh = refresh
        self._logger = get_logger('matrixcli.commands')

    @property
    def user_id(self) -> str:
        return self._identity.user_id

    async def _after_write(self) -> None:
        """Catch up after a write. A failed refresh only leaves the view stale."""
        if not self._refresh:
            return
        try:
            await self._engine.catch_up()
        except (TransportError, ProtocolError) as e:
            self._logger.warning(f"Refresh after write failed, local view may be stale: {e}")

    # =========================================================================
    # Room references
    # =========================================================================

    async def resolve_room(self, room: str) -> str:
        """
        Turn a room reference into a room id.

        Args:
            room: Room id (!id:server), alias (#alias:server) or the name
                of a cached room

        Returns:
            Room id

        Raises:
            CommandError: Unknown or ambiguous room name
            ProtocolError: Alias not found on the server
        """
        room = room.strip()
        if not room:
            raise CommandError("Room must not be empty")
        if room.startswith('!'):
            return room
        if room.startswith('#'):
            result = await self._api.resolve_alias(room)
            room_id = result.get('room_id')
            if not room_id:
                raise ProtocolError(f"Alias {room} did not resolve to a room", error_code='M_NOT_FOUND')
            return room_id

        matches = [
            state for state in self._cache.snapshot()
            if room in (state.display_name, state.canonical_alias)
        ]
        if not matches:
            raise CommandError(f"No known room named {room!r}; use a room id or #alias")
        if len(matches) > 1:
            ids = ', '.join(state.room_id for state in matches)
            raise CommandError(f"Room name {room!r} is ambiguous ({ids})")
        return matches[0].room_id

    # =========================================================================
    # Rooms
    # =========================================================================

    async def create_room(
        self,
        name: Optional[str] = None,
        alias: Optional[str] = None,
        topic: Optional[str] = None,
        invite: Optional[List[str]] = None,
        public: bool = False
    ) -> str:
        """
        Create a room.

        Args:
            name: Room name
            alias: Alias localpart, or a full #alias:server
            topic: Room topic
            invite: User ids to invite
            public: Publish the room in the directory and allow joins

        Returns:
            New room id
        """
        localpart = None
        if alias:
            localpart = alias.lstrip('#').split(':', 1)[0]
            if not localpart:
                raise CommandError(f"Invalid alias {alias!r}")
        room_id = await self._api.create_room(
            name=name,
            alias_localpart=localpart,
            topic=topic,
            invite=invite,
            public=public
        )
        self._logger.info(f"Created room {room_id}")
        await self._after_write()
        return room_id

    async def join_room(self, room: str) -> str:
        """Join by room id or alias; returns the room id."""
        room = room.strip()
        if not room.startswith(('!', '#')):
            room = await self.resolve_room(room)
        room_id = await self._api.join_room(room, server_names=[self._identity.server_name])
        self._logger.info(f"Joined {room_id}")
        await self._after_write()
        return room_id

    async def leave_room(self, room: str) -> str:
        room_id = await self.resolve_room(room)
        await self._api.leave_room(room_id)
        self._logger.info(f"Left {room_id}")
        await self._after_write()
        return room_id

    async def invite(self, room: str, user_id: str) -> str:
        room_id = await self.resolve_room(room)
        await self._api.invite_user(room_id, _check_user_id(user_id))
        await self._after_write()
        return room_id

    async def kick(self, room: str, user_id: str, reason: Optional[str] = None) -> str:
        room_id = await self.resolve_room(room)
        await self._api.kick_user(room_id, _check_user_id(user_id), reason=reason)
        await self._after_write()
        return room_id

    async def ban(self, room: str, user_id: str, reason: Optional[str] = None) -> str:
        room_id = await self.resolve_room(room)
        await self._api.ban_user(room_id, _check_user_id(user_id), reason=reason)
        await self._after_write()
        return room_id

    async def unban(self, room: str, user_id: str) -> str:
        room_id = await self.resolve_room(room)
        await self._api.unban_user(room_id, _check_user_id(user_id))
        await self._after_write()
        return room_id

    async def create_alias(self, alias: str, room: str) -> str:
        """
        Point a new alias at a room.

        Args:
            alias: Full alias (#name:server) or a localpart on the
                account's own server
            room: Room reference

        Returns:
            The full alias
        """
        if not alias.startswith('#'):
            alias = f"#{alias}"
        if ':' not in alias:
            alias = f"{alias}:{_server_part(self._identity.user_id)}"
        room_id = await self.resolve_room(room)
        await self._api.create_alias(alias, room_id)
        self._logger.info(f"Alias {alias} -> {room_id}")
        await self._after_write()
        return alias

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(self, room: str, body: str, msgtype: str = 'm.text') -> str:
        """
        Send a text message to a joined room.

        Never retried: a failed send is reported and may be resubmitted
        by the user.

        Returns:
            Event id

        Raises:
            CommandError: Empty body, or the room is not joined
        """
        if not body:
            raise CommandError("Message body must not be empty")
        room_id = await self.resolve_room(room)
        state = self._cache.room(room_id)
        if state is None or state.membership is not Membership.JOINED:
            raise CommandError(f"Not joined to {room}; join the room first")
        event_id = await self._api.send_message(room_id, body, msgtype=msgtype)
        self._logger.info(f"Sent {event_id} to {room_id}")
        await self._after_write()
        return event_id

    async def messages(self, room: Optional[str] = None) -> AsyncIterator[MessageEvent]:
        """
        Stream incoming messages until the iteration is left.

        Args:
            room: Room reference (all joined rooms when None)
        """
        room_id = await self.resolve_room(room) if room else None
        async for message in self._engine.messages(room_id):
            yield message

    # =========================================================================
    # Profile
    # =========================================================================

    async def get_display_name(self, user_id: Optional[str] = None) -> Optional[str]:
        return await self._api.get_display_name(user_id or self.user_id)

    async def set_display_name(self, display_name: str) -> None:
        await self._api.set_display_name(self.user_id, display_name)
        await self._after_write()

    async def get_avatar_url(self, user_id: Optional[str] = None) -> Optional[str]:
        return await self._api.get_avatar_url(user_id or self.user_id)

    async def set_avatar(self, path: Union[str, Path]) -> str:
        """
        Upload an image and make it the account avatar.

        Args:
            path: Local image file

        Returns:
            mxc:// URI of the uploaded image

        Raises:
            CommandError: Path is not a readable, non-empty file
        """
        path = Path(path).expanduser()
        if not path.is_file():
            raise CommandError(f"Not a file: {path}")

        async with aiofiles.open(path, 'rb') as f:
            data = await f.read()
        if not data:
            raise CommandError(f"Cannot upload empty file {path}")

        content_type = mimetypes.guess_type(path.name)[0] or 'application/octet-stream'
        content_uri = await self._api.upload(data, content_type, filename=path.name)
        await self._api.set_avatar_url(self.user_id, content_uri)
        self._logger.info(f"Avatar set to {content_uri}")
        await self._after_write()
        return content_uri

    async def get_profile(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        return await self._api.get_profile(user_id or self.user_id)

    # =========================================================================
    # Cached views
    # =========================================================================

    async def rooms(self, membership: Membership) -> List[RoomState]:
        """Rooms with the given membership, after bringing the cache up to date."""
        await self._engine.catch_up()
        return self._cache.snapshot(membership)

    async def joined_rooms(self) -> List[RoomState]:
        return await self.rooms(Membership.JOINED)

    async def invited_rooms(self) -> List[RoomState]:
        return await self.rooms(Membership.INVITED)

    async def left_rooms(self) -> List[RoomState]:
        return await self.rooms(Membership.LEFT)


def _check_user_id(user_id: str) -> str:
    user_id = user_id.strip()
    if not user_id.startswith('@') or ':' not in user_id:
        raise CommandError(f"Invalid user id {user_id!r}; expected @name:server")
    return user_id


def _server_part(user_id: str) -> str:
    return user_id.split(':', 1)[1] if ':' in user_id else user_id
