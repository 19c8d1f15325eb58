"""Explicit retry policy for remote calls made by the pipeline."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .errors import BadStatus, NetworkError, PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a remote call is attempted and how long to wait between.

    The default of a single attempt means failures surface immediately and
    the user re-submits.
    """
    max_attempts: int = 1
    initial_delay_seconds: float = 2.0
    backoff_factor: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_seconds < 0 or self.backoff_factor < 1:
            raise ValueError("retry delays must be non-negative and non-shrinking")

    @staticmethod
    def is_retryable(error: PipelineError) -> bool:
        if isinstance(error, NetworkError):
            return True
        return isinstance(error, BadStatus) and error.code >= 500

    def delay_for(self, attempt: int) -> float:
        """Delay before ``attempt`` (1-based; the first attempt has none)."""
        if attempt <= 1:
            return 0.0
        return self.initial_delay_seconds * (self.backoff_factor ** (attempt - 2))

    async def run(self, call: Callable[[], Awaitable[T]], description: str = "remote call") -> T:
        """Run ``call`` under this policy, re-raising the last failure."""
        attempt = 1
        while True:
            try:
                return await call()
            except PipelineError as e:
                if attempt >= self.max_attempts or not self.is_retryable(e):
                    raise
                attempt += 1
                delay = self.delay_for(attempt)
                logger.warning(f"{description} failed ({e}); retrying in {delay:.1f}s "
                               f"(attempt {attempt}/{self.max_attempts})")
                await asyncio.sleep(delay)
