"""
SQLite state cache.

Stores sync progress and the derived room, member and account state of
one identity in a local SQLite database, so a run does not have to fetch
the full state again.
"""
import json
import sqlite3
import threading
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from contextlib import contextmanager

from .delta import StateEvent, SyncDelta
from .models import MemberInfo, Membership, RoomState, SyncCursor, power_level_for
from ..exceptions import StaleDeltaError, StateCorruption
from ..logging import get_logger
from ..session.models import Identity


class StateCache:
    """
    SQLite-based sync state storage.

    One database per identity at <store_dir>/<identity.store_key>/state.db.
    Every apply() runs in a single transaction covering both the state
    changes and the cursor advance.

    Example:
        >>> with StateCache.open(Path("~/.cache/matrix-cli"), identity) as cache:
        ...     cache.apply(delta)
        ...     rooms = cache.snapshot(Membership.JOINED)
    """

    FILENAME = 'state.db'
    SCHEMA_VERSION = 1

    def __init__(self, path: Optional[Path], identity: Identity):
        """
        Initialize the cache.

        Args:
            path: Database file, or None for an in-memory database
            identity: Account the cache belongs to
        """
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._path = path
        self._identity = identity
        self._logger = get_logger('matrixcli.state')

        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._init_db()
        except StateCorruption:
            self.close()
            raise
        except sqlite3.DatabaseError as e:
            self.close()
            raise StateCorruption(self._path, f"not a usable state database ({e})") from e

    @classmethod
    def path_for(cls, store_dir: Union[str, Path], identity: Identity) -> Path:
        """Database location of identity below store_dir."""
        return Path(store_dir).expanduser() / identity.store_key / cls.FILENAME

    @classmethod
    def open(cls, store_dir: Optional[Union[str, Path]], identity: Identity) -> 'StateCache':
        """
        Open (creating if absent) the state cache of identity.

        Args:
            store_dir: Store directory, or None to keep state in memory
            identity: Account whose state is cached

        Returns:
            StateCache, usable as a context manager

        Raises:
            StateCorruption: Existing database is unreadable, newer than
                this version, or belongs to another identity
        """
        path = cls.path_for(store_dir, identity) if store_dir is not None else None
        return cls(path, identity)

    @property
    def path(self) -> Optional[Path]:
        """Get database file path (None when in memory)."""
        return self._path

    @property
    def identity(self) -> Identity:
        return self._identity

    @contextmanager
    def _get_connection(self):
        """Get thread-safe database connection."""
        with self._lock:
            if self._conn is None:
                self._conn = sqlite3.connect(
                    str(self._path) if self._path is not None else ':memory:',
                    check_same_thread=False,
                    isolation_level=None
                )
                self._conn.row_factory = sqlite3.Row
                self._conn.execute('PRAGMA foreign_keys = ON')
            yield self._conn

    @contextmanager
    def _transaction(self):
        """Exclusive write transaction: commits on success, rolls back on any error."""
        with self._get_connection() as conn:
            conn.execute('BEGIN IMMEDIATE')
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute('ROLLBACK')
                raise
            else:
                conn.execute('COMMIT')

    def _init_db(self) -> None:
        """Initialize database schema and check ownership."""
        with self._transaction() as conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS version (
                    version INTEGER PRIMARY KEY
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sync_cursor (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    token TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS rooms (
                    room_id TEXT PRIMARY KEY,
                    membership TEXT NOT NULL,
                    display_name TEXT,
                    canonical_alias TEXT,
                    topic TEXT,
                    power_levels TEXT NOT NULL DEFAULT '{}'
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS members (
                    room_id TEXT NOT NULL REFERENCES rooms(room_id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    membership TEXT NOT NULL,
                    display_name TEXT,
                    avatar_url TEXT,
                    PRIMARY KEY (room_id, user_id)
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS account_data (
                    type TEXT PRIMARY KEY,
                    content TEXT NOT NULL
                )
            ''')

            cursor.execute('SELECT version FROM version LIMIT 1')
            row = cursor.fetchone()
            if row is None:
                cursor.execute(
                    'INSERT INTO version (version) VALUES (?)',
                    (self.SCHEMA_VERSION,)
                )
            elif row['version'] > self.SCHEMA_VERSION:
                raise StateCorruption(
                    self._path,
                    f"schema version {row['version']} is newer than supported {self.SCHEMA_VERSION}"
                )

            owner = f"{self._identity.user_id}|{self._identity.homeserver_url}"
            cursor.execute("SELECT value FROM meta WHERE key = 'identity'")
            row = cursor.fetchone()
            if row is None:
                cursor.execute("INSERT INTO meta (key, value) VALUES ('identity', ?)", (owner,))
            elif row['value'] != owner:
                raise StateCorruption(self._path, f"store belongs to {row['value']}")

    # =========================================================================
    # Cursor
    # =========================================================================

    def cursor(self) -> Optional[SyncCursor]:
        """
        Last persisted sync cursor.

        Returns:
            SyncCursor, or None before the first sync of this identity
        """
        with self._get_connection() as conn:
            return self._read_cursor(conn)

    @staticmethod
    def _read_cursor(conn: sqlite3.Connection) -> Optional[SyncCursor]:
        row = conn.execute('SELECT token, position FROM sync_cursor WHERE id = 1').fetchone()
        if row is None:
            return None
        return SyncCursor(token=row['token'], position=row['position'])

    # =========================================================================
    # Apply
    # =========================================================================

    def apply(self, delta: SyncDelta) -> SyncCursor:
        """
        Merge a delta into the cached state and advance the cursor.

        The merge and the cursor update commit together or not at all.
        A delta already applied (stored cursor == delta.next_cursor) is
        merged again without moving the cursor.

        Args:
            delta: Parsed sync response

        Returns:
            The stored cursor after the apply

        Raises:
            StaleDeltaError: delta does not continue from the stored cursor
        """
        with self._transaction() as conn:
            stored = self._read_cursor(conn)
            stored_token = stored.token if stored else None

            if delta.since == stored_token:
                replay = False
            elif stored_token is not None and delta.next_cursor == stored_token:
                replay = True
            else:
                raise StaleDeltaError(stored_token, delta.since, delta.next_cursor)

            for room in delta.rooms:
                conn.execute('''
                    INSERT INTO rooms (room_id, membership) VALUES (?, ?)
                    ON CONFLICT(room_id) DO UPDATE SET membership = excluded.membership
                ''', (room.room_id, room.membership.value))
                for event in room.state_events:
                    self._apply_state_event(conn, room.room_id, event)

            for event_type, content in delta.account_data.items():
                conn.execute(
                    'INSERT OR REPLACE INTO account_data (type, content) VALUES (?, ?)',
                    (event_type, json.dumps(content))
                )

            if replay or delta.next_cursor == stored_token:
                result = stored
            else:
                position = (stored.position if stored else 0) + 1
                conn.execute('''
                    INSERT OR REPLACE INTO sync_cursor (id, token, position, updated_at)
                    VALUES (1, ?, ?, ?)
                ''', (delta.next_cursor, position, datetime.now(timezone.utc).isoformat()))
                result = SyncCursor(token=delta.next_cursor, position=position)

        if replay:
            self._logger.debug(f"Re-applied delta ending at {delta.next_cursor}")
        elif not delta.is_empty:
            self._logger.debug(
                f"Applied {len(delta.rooms)} room change(s), cursor at position {result.position}"
            )
        return result

    def _apply_state_event(self, conn: sqlite3.Connection, room_id: str, event: StateEvent) -> None:
        """Write one piece of absolute room state."""
        content = event.content

        if event.type == 'm.room.member':
            membership = content.get('membership')
            if membership in ('join', 'invite'):
                conn.execute('''
                    INSERT OR REPLACE INTO members
                        (room_id, user_id, membership, display_name, avatar_url)
                    VALUES (?, ?, ?, ?, ?)
                ''', (
                    room_id,
                    event.state_key,
                    membership,
                    content.get('displayname'),
                    content.get('avatar_url'),
                ))
            else:
                # leave, ban, knock: no longer a member
                conn.execute(
                    'DELETE FROM members WHERE room_id = ? AND user_id = ?',
                    (room_id, event.state_key)
                )
        elif event.type == 'm.room.name':
            conn.execute(
                'UPDATE rooms SET display_name = ? WHERE room_id = ?',
                (content.get('name') or None, room_id)
            )
        elif event.type == 'm.room.canonical_alias':
            conn.execute(
                'UPDATE rooms SET canonical_alias = ? WHERE room_id = ?',
                (content.get('alias') or None, room_id)
            )
        elif event.type == 'm.room.topic':
            conn.execute(
                'UPDATE rooms SET topic = ? WHERE room_id = ?',
                (content.get('topic') or None, room_id)
            )
        elif event.type == 'm.room.power_levels':
            levels = {
                'users': content.get('users') or {},
                'users_default': content.get('users_default', 0),
            }
            conn.execute(
                'UPDATE rooms SET power_levels = ? WHERE room_id = ?',
                (json.dumps(levels), room_id)
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def snapshot(self, membership: Optional[Membership] = None) -> List[RoomState]:
        """
        Read-only view of the cached rooms.

        Args:
            membership: Only rooms with this membership (all when None)

        Returns:
            RoomState list ordered by room id
        """
        with self._get_connection() as conn:
            if membership is None:
                rows = conn.execute('SELECT * FROM rooms ORDER BY room_id').fetchall()
            else:
                rows = conn.execute(
                    'SELECT * FROM rooms WHERE membership = ? ORDER BY room_id',
                    (Membership(membership).value,)
                ).fetchall()
            return [self._load_room(conn, row) for row in rows]

    def room(self, room_id: str) -> Optional[RoomState]:
        """Cached state of one room, or None if unknown."""
        with self._get_connection() as conn:
            row = conn.execute('SELECT * FROM rooms WHERE room_id = ?', (room_id,)).fetchone()
            if row is None:
                return None
            return self._load_room(conn, row)

    def account_data(self, event_type: str) -> Optional[Dict[str, Any]]:
        """Content of a global account data event, or None."""
        with self._get_connection() as conn:
            row = conn.execute(
                'SELECT content FROM account_data WHERE type = ?',
                (event_type,)
            ).fetchone()
            if row is None:
                return None
            return json.loads(row['content'])

    def _load_room(self, conn: sqlite3.Connection, row: sqlite3.Row) -> RoomState:
        power_levels = json.loads(row['power_levels'] or '{}')
        members = {}
        for member in conn.execute(
            'SELECT * FROM members WHERE room_id = ? ORDER BY user_id',
            (row['room_id'],)
        ):
            members[member['user_id']] = MemberInfo(
                user_id=member['user_id'],
                display_name=member['display_name'],
                avatar_url=member['avatar_url'],
                power_level=power_level_for(power_levels, member['user_id']),
                membership=member['membership'],
            )
        return RoomState(
            room_id=row['room_id'],
            membership=Membership(row['membership']),
            display_name=row['display_name'],
            canonical_alias=row['canonical_alias'],
            topic=row['topic'],
            members=members,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> 'StateCache':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
