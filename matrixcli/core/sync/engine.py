"""Incremental /sync driver.

The engine owns the request side of the sync protocol: it reads the cursor
from the StateCache, asks the homeserver for the changes since that cursor,
and hands each delta to ``StateCache.apply()``.

Two modes:

* ``catch_up()`` -- immediate (``timeout=0``) requests until the server has
  nothing new. Run before one-shot commands so reads are current.
* ``listen()`` -- catch up, then long-poll forever, pushing message events
  into a bounded ``asyncio.Queue`` until cancelled.

Retry policy: only transport failures are retried, always with the cursor
that was current before the failure. Auth and protocol errors stop the
engine and propagate to the caller.
"""
import asyncio
from enum import Enum
from typing import AsyncIterator, Optional

from ..api.protocols import ProtocolClient
from ..api.retry import ExponentialBackoffStrategy, RetryStrategy
from ..config import SyncConfig
from ..exceptions import MatrixCliError, TransportError
from ..logging import get_logger
from ..state import MessageEvent, StateCache, SyncDelta


class SyncStatus(str, Enum):
    """Engine state."""
    IDLE = 'idle'
    SYNCING = 'syncing'
    BACKOFF = 'backoff'
    ERROR = 'error'


class SyncEngine:
    """Drives the incremental synchronization of one account.

    Args:
        api: Authenticated protocol client.
        cache: State cache of the authenticated identity.
        config: Sync settings (long-poll timeout, retries, queue size).
        retry: Backoff strategy for transport failures.
    """

    def __init__(
        self,
        api: ProtocolClient,
        cache: StateCache,
        config: Optional[SyncConfig] = None,
        retry: Optional[RetryStrategy] = None
    ) -> None:
        self._api = api
        self._cache = cache
        self._config = config or SyncConfig()
        self._retry = retry or ExponentialBackoffStrategy()
        self._logger = get_logger('matrixcli.sync')
        self.status = SyncStatus.IDLE
        self.last_error: Optional[MatrixCliError] = None

    @property
    def cache(self) -> StateCache:
        return self._cache

    # ------------------------------------------------------------------
    # Single round-trip
    # ------------------------------------------------------------------

    async def _request(
        self,
        since: Optional[str],
        timeout_ms: int,
        max_retries: Optional[int],
        cancel: Optional[asyncio.Event] = None
    ) -> Optional[SyncDelta]:
        """Fetch one delta, retrying transport failures with the same cursor.

        Returns None when ``cancel`` is set before a delta arrives.
        """
        full_state = since is None and self._config.full_state_on_first_sync
        attempt = 0
        while True:
            if cancel is not None and cancel.is_set():
                self.status = SyncStatus.IDLE
                return None
            self.status = SyncStatus.SYNCING
            try:
                response = await self._api.sync(
                    since=since,
                    timeout_ms=timeout_ms,
                    full_state=full_state,
                    filter=self._config.filter
                )
                return SyncDelta.from_response(since, response)
            except TransportError as e:
                if not self._retry.should_retry(e, attempt, max_retries):
                    self._fail(e)
                    raise
                delay = self._retry.delay_for(e, attempt)
                self.status = SyncStatus.BACKOFF
                self.last_error = e
                self._logger.warning(
                    f"Sync failed ({e}); retry {attempt + 1} in {delay:.1f}s from the same cursor"
                )
                await self._retry.wait_async(delay, cancel)
                attempt += 1
            except MatrixCliError as e:
                self._fail(e)
                raise

    def _fail(self, error: MatrixCliError) -> None:
        self.status = SyncStatus.ERROR
        self.last_error = error
        self._logger.error(f"Sync stopped: {error}")

    async def sync_once(
        self,
        timeout_ms: int = 0,
        max_retries: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None
    ) -> Optional[SyncDelta]:
        """Perform one sync round-trip and apply its delta.

        There is no suspension point between receiving the response and
        committing it, so a cancelled task never leaves a half-applied
        delta behind.

        Args:
            timeout_ms: Server-side long-poll wait.
            max_retries: Transport retries before giving up (None: forever).
            cancel: Stops retrying and interrupts the backoff wait once set.

        Returns:
            The applied delta, or None when cancelled before one arrived
            (nothing is applied and the cursor is unchanged).
        """
        cursor = self._cache.cursor()
        delta = await self._request(cursor.token if cursor else None, timeout_ms, max_retries, cancel)
        if delta is None:
            return None
        self._cache.apply(delta)
        self.status = SyncStatus.IDLE
        self.last_error = None
        return delta

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def catch_up(self) -> int:
        """Sync without waiting until the server reports nothing new.

        Gives up after ``SyncConfig.max_retries`` consecutive transport
        failures.

        Returns:
            Number of non-empty deltas applied.
        """
        return await self._catch_up(self._config.max_retries)

    async def _catch_up(self, max_retries: Optional[int], cancel: Optional[asyncio.Event] = None) -> int:
        applied = 0
        while True:
            delta = await self.sync_once(timeout_ms=0, max_retries=max_retries, cancel=cancel)
            if delta is None or delta.is_empty or delta.next_cursor == delta.since:
                self._logger.debug(f"Caught up after {applied} delta(s)")
                return applied
            applied += 1

    async def listen(
        self,
        queue: asyncio.Queue,
        room_id: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None
    ) -> None:
        """Long-poll for changes and feed message events into ``queue``.

        Messages already present when listening starts are not delivered:
        the initial catch-up only brings the cache up to date. Transport
        failures are retried without limit, the initial catch-up included.

        A delta is committed before its messages are queued. Every message
        of a delta is queued before the next round-trip starts, but if the
        task is cancelled while blocked on a full queue, the rest of that
        delta is dropped and not delivered again.

        Args:
            queue: Bounded channel receiving MessageEvent objects; a full
                queue blocks the loop (backpressure).
            room_id: Only deliver messages of this room (all joined rooms
                when None).
            cancel: Set it to stop. Checked between round-trips and during
                backoff waits.
        """
        cancel = cancel or asyncio.Event()
        await self._catch_up(None, cancel)
        self._logger.info(f"Listening for messages in {room_id or 'all joined rooms'}")

        while not cancel.is_set():
            delta = await self.sync_once(
                timeout_ms=self._config.long_poll_timeout_ms,
                max_retries=None,
                cancel=cancel
            )
            if delta is None:
                break
            for message in delta.messages:
                if room_id is None or message.room_id == room_id:
                    await queue.put(message)

        self._logger.info("Listening stopped")

    async def messages(self, room_id: Optional[str] = None) -> AsyncIterator[MessageEvent]:
        """Iterate over incoming messages.

        Runs ``listen()`` in a task with a bounded queue; leaving the
        iteration cancels the task.

        Args:
            room_id: Only yield messages of this room.

        Yields:
            MessageEvent objects in arrival order.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._config.queue_size)
        cancel = asyncio.Event()
        task = asyncio.create_task(self.listen(queue, room_id, cancel))
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield getter.result()
                    continue
                getter.cancel()
                # listen() only ends on error or cancellation
                task.result()
                return
        finally:
            cancel.set()
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            elif not task.cancelled() and task.exception() is not None:
                self._logger.debug(f"Listener ended with {task.exception()!r}")
