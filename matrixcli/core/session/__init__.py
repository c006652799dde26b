"""
Session management module.

Credential resolution and persistent session storage.
"""
from .protocols import SessionStorage
from .models import (
    AuthMode,
    Credential,
    FreshLogin,
    Identity,
    PasswordCredential,
    ResumeSession,
    Session,
    TokenCredential,
)
from .file_session import JSONSessionFile
from .memory_session import MemorySession
from .store import SessionStore
from .resolver import CredentialResolver

__all__ = [
    'SessionStorage',
    'AuthMode',
    'Credential',
    'FreshLogin',
    'Identity',
    'PasswordCredential',
    'ResumeSession',
    'Session',
    'TokenCredential',
    'JSONSessionFile',
    'MemorySession',
    'SessionStore',
    'CredentialResolver',
]
