from __future__ import annotations

"""
Shared retry policy for transcription calls.

Design intent:
- One place decides attempts and backoff for every backend and call site.
- Linear backoff (``base_delay * attempt_number``) keeps the chunk budget predictable.
- Only errors flagged ``retryable`` are retried; caller errors surface on the first attempt.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    delay_fn: Optional[Callable[[int], float]] = None
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def delay(self, attempt_number: int) -> float:
        if self.delay_fn is not None:
            return max(0.0, float(self.delay_fn(attempt_number)))
        return max(0.0, self.base_delay * attempt_number)

    def _wait(self, retry_state: Any) -> float:
        return self.delay(retry_state.attempt_number)

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` until it succeeds, a non-retryable error occurs, or attempts run out.

        The last exception is re-raised unchanged when attempts are exhausted.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, int(self.max_attempts))),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            sleep=self.sleep,
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        ):
            with attempt:
                return await fn(*args, **kwargs)
        raise AssertionError("unreachable: AsyncRetrying reraises on exhaustion")

    @classmethod
    def from_config(cls, cfg: Any) -> "RetryPolicy":
        return cls(
            max_attempts=int(cfg.MEMO_CHUNK_MAX_ATTEMPTS),
            base_delay=float(cfg.MEMO_CHUNK_RETRY_DELAY_SEC),
        )
