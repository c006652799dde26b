"""
Room and member state models.

These are read-only views handed out by StateCache.snapshot(); only the
sync engine, through StateCache.apply(), changes the underlying state.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Membership(str, Enum):
    """Membership of the logged in user in a room."""
    JOINED = 'join'
    INVITED = 'invite'
    LEFT = 'leave'


@dataclass(frozen=True)
class SyncCursor:
    """
    Sync progress of one account.

    Attributes:
        token: Opaque next_batch token issued by the server
        position: Local counter, incremented on every cursor advance
    """
    token: str
    position: int


@dataclass
class MemberInfo:
    """A joined or invited member of a room."""
    user_id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    power_level: int = 0
    membership: str = 'join'


@dataclass
class RoomState:
    """
    Cached state of one room.

    Attributes:
        room_id: Room id (!opaque:server)
        membership: joined, invited or left
        display_name: m.room.name, if set
        canonical_alias: m.room.canonical_alias, if set
        topic: m.room.topic, if set
        members: user_id -> MemberInfo for joined and invited members
    """
    room_id: str
    membership: Membership
    display_name: Optional[str] = None
    canonical_alias: Optional[str] = None
    topic: Optional[str] = None
    members: Dict[str, MemberInfo] = field(default_factory=dict)

    @property
    def label(self) -> str:
        """Human readable name: room name, then alias, then id."""
        return self.display_name or self.canonical_alias or self.room_id

    def power_level_of(self, user_id: str) -> int:
        """Power level of a member (0 for non-members)."""
        member = self.members.get(user_id)
        return member.power_level if member else 0


def power_level_for(power_levels: Dict[str, Any], user_id: str) -> int:
    """Resolve a user's level from m.room.power_levels content."""
    users = power_levels.get('users') or {}
    level = users.get(user_id, power_levels.get('users_default', 0))
    try:
        return int(level)
    except (TypeError, ValueError):
        return 0
