"""
Sync delta models.

A SyncDelta is one parsed /sync response: everything that changed between
the request cursor (since) and the response cursor (next_cursor). State is
expressed as absolute facts (membership, names, power levels), so applying
the same delta again converges to the same result.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import Membership
from ..exceptions import ProtocolError


# Matrix /sync response sections -> local membership
SECTIONS = (
    ('join', Membership.JOINED),
    ('invite', Membership.INVITED),
    ('leave', Membership.LEFT),
)


@dataclass(frozen=True)
class StateEvent:
    """A state event (type + state_key identify the piece of state)."""
    type: str
    state_key: str
    content: Dict[str, Any]
    sender: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> Optional['StateEvent']:
        """Parse a raw event; None for events that are not state events."""
        if not isinstance(raw, dict):
            return None
        event_type = raw.get('type')
        state_key = raw.get('state_key')
        if not isinstance(event_type, str) or not isinstance(state_key, str):
            return None
        content = raw.get('content')
        return cls(
            type=event_type,
            state_key=state_key,
            content=content if isinstance(content, dict) else {},
            sender=raw.get('sender'),
        )


@dataclass(frozen=True)
class MessageEvent:
    """An m.room.message event received through sync."""
    room_id: str
    event_id: str
    sender: str
    body: str
    msgtype: str
    origin_server_ts: int

    @property
    def timestamp(self) -> datetime:
        """origin_server_ts as an aware UTC datetime."""
        return datetime.fromtimestamp(self.origin_server_ts / 1000.0, tz=timezone.utc)

    @classmethod
    def from_raw(cls, room_id: str, raw: Dict[str, Any]) -> Optional['MessageEvent']:
        """Parse a timeline event; None for anything but a readable message."""
        if not isinstance(raw, dict) or raw.get('type') != 'm.room.message':
            return None
        content = raw.get('content')
        if not isinstance(content, dict) or not isinstance(content.get('body'), str):
            return None
        return cls(
            room_id=room_id,
            event_id=raw.get('event_id', ''),
            sender=raw.get('sender', ''),
            body=content['body'],
            msgtype=content.get('msgtype', 'm.text'),
            origin_server_ts=int(raw.get('origin_server_ts', 0)),
        )


@dataclass
class RoomDelta:
    """
    Changes to one room.

    Attributes:
        room_id: Room id
        membership: Section the room appeared in
        state_events: State changes in order (state block, then state
            events found in the timeline)
        messages: Message events from the timeline
        limited: The server truncated the timeline
    """
    room_id: str
    membership: Membership
    state_events: List[StateEvent] = field(default_factory=list)
    messages: List[MessageEvent] = field(default_factory=list)
    limited: bool = False


@dataclass
class SyncDelta:
    """
    One incremental sync step.

    Attributes:
        since: Cursor the request was made with (None for an initial sync)
        next_cursor: Cursor returned by the server
        rooms: Per-room changes
        account_data: Global account data events (type -> content)
    """
    since: Optional[str]
    next_cursor: str
    rooms: List[RoomDelta] = field(default_factory=list)
    account_data: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """No room and no account data changed."""
        return not self.rooms and not self.account_data

    @property
    def messages(self) -> List[MessageEvent]:
        """Messages of joined rooms, in delta order."""
        return [
            message
            for room in self.rooms
            if room.membership is Membership.JOINED
            for message in room.messages
        ]

    @classmethod
    def from_response(cls, since: Optional[str], response: Dict[str, Any]) -> 'SyncDelta':
        """
        Parse a raw /sync response.

        Args:
            since: Cursor the request was made with
            response: Decoded JSON body

        Returns:
            SyncDelta

        Raises:
            ProtocolError: Response lacks next_batch or is not an object
        """
        if not isinstance(response, dict):
            raise ProtocolError("Malformed sync response")
        next_cursor = response.get('next_batch')
        if not isinstance(next_cursor, str) or not next_cursor:
            raise ProtocolError("Sync response is missing next_batch")

        rooms: List[RoomDelta] = []
        sections = response.get('rooms')
        if not isinstance(sections, dict):
            sections = {}
        for section, membership in SECTIONS:
            entries = sections.get(section)
            if not isinstance(entries, dict):
                continue
            for room_id, room in entries.items():
                if isinstance(room_id, str) and (room is None or isinstance(room, dict)):
                    rooms.append(_parse_room(room_id, membership, room or {}))

        account_data: Dict[str, Dict[str, Any]] = {}
        for raw in _events(response.get('account_data')):
            if isinstance(raw, dict) and isinstance(raw.get('type'), str):
                content = raw.get('content')
                account_data[raw['type']] = content if isinstance(content, dict) else {}

        return cls(
            since=since,
            next_cursor=next_cursor,
            rooms=rooms,
            account_data=account_data,
        )


def _events(block: Any) -> List[Any]:
    if not isinstance(block, dict):
        return []
    events = block.get('events')
    return events if isinstance(events, list) else []


def _parse_room(room_id: str, membership: Membership, room: Dict[str, Any]) -> RoomDelta:
    delta = RoomDelta(room_id=room_id, membership=membership)

    if membership is Membership.INVITED:
        # Invites carry stripped state only
        raw_state = _events(room.get('invite_state'))
        delta.state_events = [e for e in map(StateEvent.from_raw, raw_state) if e]
        return delta

    timeline = room.get('timeline') or {}
    delta.limited = bool(timeline.get('limited', False)) if isinstance(timeline, dict) else False

    state_events = [e for e in map(StateEvent.from_raw, _events(room.get('state'))) if e]
    for raw in _events(timeline):
        state_event = StateEvent.from_raw(raw)
        if state_event:
            state_events.append(state_event)
            continue
        message = MessageEvent.from_raw(room_id, raw)
        if message:
            delta.messages.append(message)

    delta.state_events = state_events
    return delta
