"""Retry strategies using Strategy Pattern."""
import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from ..config import RetryConfig
from ...exceptions import MatrixCliError, RateLimitedError, TransportError


class RetryStrategy(ABC):
    """Abstract retry strategy."""

    @abstractmethod
    def should_retry(
        self,
        error: MatrixCliError,
        retry_count: int,
        max_retries: Optional[int]
    ) -> bool:
        """Determines if request should be retried."""
        pass

    @abstractmethod
    def delay_for(self, error: MatrixCliError, retry_count: int) -> float:
        """Seconds to wait before the next attempt."""
        pass

    async def wait_async(self, delay: float, cancel: Optional[asyncio.Event] = None):
        """Waits before retry (async); returns early once cancel is set."""
        if cancel is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel.wait(), delay)
        except asyncio.TimeoutError:
            pass


class ExponentialBackoffStrategy(RetryStrategy):
    """
    Exponential backoff retry strategy.

    Retries transport failures only. The delay doubles per attempt and is
    capped at RetryConfig.max_delay, including server supplied
    retry_after_ms hints.
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

    def should_retry(
        self,
        error: MatrixCliError,
        retry_count: int,
        max_retries: Optional[int]
    ) -> bool:
        """Retries TransportError while under max_retries (None means forever)."""
        if not isinstance(error, TransportError):
            return False
        return max_retries is None or retry_count < max_retries

    def delay_for(self, error: MatrixCliError, retry_count: int) -> float:
        """Backoff delay, or the server's retry_after_ms hint, capped."""
        delay = self.config.calculate_delay(retry_count)
        if isinstance(error, RateLimitedError) and error.retry_after_ms:
            delay = max(delay, error.retry_after_ms / 1000.0)
        return min(delay, self.config.max_delay)
