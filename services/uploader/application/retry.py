from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from services.uploader.domain.errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 30.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retries an operation on ``TransportError`` with exponential backoff.

    ``max_retries`` counts the attempts made after the first one. Any other
    error propagates immediately.
    """

    max_retries: int
    backoff_seconds: float = 0.5

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        return min(self.backoff_seconds * 2 ** (attempt - 1), MAX_BACKOFF_SECONDS)

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        for attempt in range(1, self.attempts + 1):
            try:
                return await operation()
            except TransportError as exc:
                if attempt >= self.attempts:
                    logger.error(
                        "%s: %s after %d attempts, giving up", label, exc, attempt
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s: %s on attempt %d/%d, retrying in %.2fs",
                    label,
                    exc,
                    attempt,
                    self.attempts,
                    delay,
                )
                await asyncio.sleep(delay)
        raise RuntimeError(f"{label}: retry loop exited without a result")
