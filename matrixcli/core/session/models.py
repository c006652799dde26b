"""
Session data models.

Contains data classes for identities, credentials, sessions and the
authentication mode chosen for an invocation.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse
import json
import re


def normalize_homeserver(url: str) -> str:
    """Canonical form of a homeserver URL used for comparisons."""
    return url.strip().rstrip('/').lower()


@dataclass(frozen=True)
class Identity:
    """
    One Matrix account on one homeserver.

    Attributes:
        homeserver_url: Homeserver base URL
        user_id: Full user id (@user:server) once authenticated; the
            username as typed before a fresh login
    """
    homeserver_url: str
    user_id: str

    @property
    def server_name(self) -> str:
        """Host part of the homeserver URL."""
        return urlparse(self.homeserver_url).hostname or self.homeserver_url

    @property
    def store_key(self) -> str:
        """Filesystem-safe key partitioning on-disk state per identity."""
        raw = f"{self.user_id}@{self.server_name}"
        return re.sub(r'[^A-Za-z0-9._-]+', '_', raw).strip('_')


@dataclass(frozen=True)
class PasswordCredential:
    """Username/password pair. Never persisted."""
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class TokenCredential:
    """Access token issued by a previous login."""
    access_token: str = field(repr=False)
    device_id: Optional[str] = None


Credential = Union[PasswordCredential, TokenCredential]


@dataclass
class Session:
    """
    Post-authentication session record.

    Contains all information needed to resume a session without
    re-entering credentials.

    Attributes:
        homeserver_url: Homeserver base URL
        user_id: Full Matrix user id
        device_id: Device the access token belongs to
        access_token: Bearer token
        refresh_token: Refresh token, if the server issued one
        created_at: Session creation timestamp
    """
    homeserver_url: str
    user_id: str
    device_id: str
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    REQUIRED_FIELDS = ('homeserver_url', 'user_id', 'device_id', 'access_token')

    @property
    def identity(self) -> Identity:
        """Identity this session authenticates."""
        return Identity(homeserver_url=self.homeserver_url, user_id=self.user_id)

    @property
    def credential(self) -> TokenCredential:
        """Token credential of this session."""
        return TokenCredential(access_token=self.access_token, device_id=self.device_id)

    def to_dict(self) -> dict:
        """
        Convert to dictionary for serialization.

        Returns:
            Dictionary representation
        """
        return {
            'homeserver_url': self.homeserver_url,
            'user_id': self.user_id,
            'device_id': self.device_id,
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'created_at': self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Session':
        """
        Create from dictionary.

        Args:
            data: Dictionary with session data

        Returns:
            Session instance

        Raises:
            ValueError: A required field is missing, empty or not a string,
                or user_id is not a full user id
        """
        if not isinstance(data, dict):
            raise ValueError("session must be a JSON object")

        for name in cls.REQUIRED_FIELDS:
            value = data.get(name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"field '{name}' is missing or empty")
        if not data['user_id'].startswith('@'):
            raise ValueError("field 'user_id' must be a full user id (@user:server)")

        refresh_token = data.get('refresh_token')
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("field 'refresh_token' must be a string or null")

        created_at = data.get('created_at')
        return cls(
            homeserver_url=data['homeserver_url'],
            user_id=data['user_id'],
            device_id=data['device_id'],
            access_token=data['access_token'],
            refresh_token=refresh_token,
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(timezone.utc),
        )

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> 'Session':
        """Create from JSON string."""
        return cls.from_dict(json.loads(json_str))


@dataclass(frozen=True)
class FreshLogin:
    """Log in with a password and create a new session."""
    identity: Identity
    credential: PasswordCredential


@dataclass(frozen=True)
class ResumeSession:
    """Reuse the session loaded from path."""
    session: Session
    path: Optional[Path] = None

    @property
    def identity(self) -> Identity:
        return self.session.identity


AuthMode = Union[FreshLogin, ResumeSession]
