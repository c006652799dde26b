"""
State cache module.

On-disk sync progress and derived room/member/account state.
"""
from .models import MemberInfo, Membership, RoomState, SyncCursor
from .delta import MessageEvent, RoomDelta, StateEvent, SyncDelta
from .sqlite_cache import StateCache

__all__ = [
    'MemberInfo',
    'Membership',
    'RoomState',
    'SyncCursor',
    'MessageEvent',
    'RoomDelta',
    'StateEvent',
    'SyncDelta',
    'StateCache',
]
