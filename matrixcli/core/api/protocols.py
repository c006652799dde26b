"""
Protocol client interface.

The session and sync core talks to the homeserver through this protocol
only, so any implementation (the aiohttp client, an in-memory fake in
tests) can be plugged in.
"""
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class ProtocolClient(Protocol):
    """
    Request/response plus long-poll access to a Matrix homeserver.

    Implementations raise AuthError for rejected credentials or tokens,
    TransportError for timeouts, connection failures and 5xx/429
    responses, and ProtocolError for other well-formed rejections.
    """

    access_token: Optional[str]

    async def login(
        self,
        username: str,
        password: str,
        device_name: Optional[str] = None,
        device_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Password login. Returns the login response (user_id, access_token, device_id)."""
        ...

    async def whoami(self) -> Dict[str, Any]:
        """Returns user_id/device_id owning the current access token."""
        ...

    async def logout(self) -> None:
        """Invalidates the current access token server-side."""
        ...

    async def sync(
        self,
        since: Optional[str] = None,
        timeout_ms: int = 0,
        full_state: bool = False,
        filter: Optional[str] = None
    ) -> Dict[str, Any]:
        """One /sync round-trip. timeout_ms > 0 long-polls on the server."""
        ...

    async def create_room(
        self,
        name: Optional[str] = None,
        alias_localpart: Optional[str] = None,
        topic: Optional[str] = None,
        invite: Optional[List[str]] = None,
        public: bool = False
    ) -> str:
        ...

    async def join_room(self, room_id_or_alias: str, server_names: Optional[List[str]] = None) -> str:
        ...

    async def leave_room(self, room_id: str) -> None:
        ...

    async def invite_user(self, room_id: str, user_id: str) -> None:
        ...

    async def kick_user(self, room_id: str, user_id: str, reason: Optional[str] = None) -> None:
        ...

    async def ban_user(self, room_id: str, user_id: str, reason: Optional[str] = None) -> None:
        ...

    async def unban_user(self, room_id: str, user_id: str) -> None:
        ...

    async def send_message(
        self,
        room_id: str,
        body: str,
        msgtype: str = 'm.text',
        txn_id: Optional[str] = None
    ) -> str:
        ...

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        ...

    async def get_display_name(self, user_id: str) -> Optional[str]:
        ...

    async def set_display_name(self, user_id: str, display_name: str) -> None:
        ...

    async def get_avatar_url(self, user_id: str) -> Optional[str]:
        ...

    async def set_avatar_url(self, user_id: str, avatar_url: str) -> None:
        ...

    async def upload(self, data: bytes, content_type: str, filename: Optional[str] = None) -> str:
        ...

    async def create_alias(self, alias: str, room_id: str) -> None:
        ...

    async def resolve_alias(self, alias: str) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...
