from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from ..contracts import ChunkResult, Segment, TranscriptionResponse
from .base import ChunkCallback, TranscriptionError

logger = logging.getLogger(__name__)

ChunkOperation = Callable[[int, Segment], Awaitable[TranscriptionResponse]]

DEFAULT_CONCURRENCY = 3


def placeholder_response(segment: Segment) -> TranscriptionResponse:
    return TranscriptionResponse(text="", duration=segment.duration)


def _preview(text: str, limit: int = 50) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else text[:limit] + "…"


async def _run_one(
    operation: ChunkOperation,
    index: int,
    segment: Segment,
    total: int,
    provider_name: str,
) -> ChunkResult:
    start_monotonic = time.monotonic()
    try:
        response = await operation(index, segment)
    except TranscriptionError as e:
        logger.warning(
            "chunk degraded to placeholder chunk_index=%s/%s provider=%s code=%s detail=%s",
            index,
            total,
            e.provider_name or provider_name,
            e.code,
            e.message,
        )
        return ChunkResult(segment=segment, response=placeholder_response(segment))
    except Exception as e:
        logger.warning(
            "chunk degraded to placeholder chunk_index=%s/%s provider=%s error=%r",
            index,
            total,
            provider_name,
            e,
        )
        return ChunkResult(segment=segment, response=placeholder_response(segment))

    logger.debug(
        "chunk done chunk_index=%s/%s provider=%s duration_ms=%s preview=%r",
        index,
        total,
        provider_name,
        int((time.monotonic() - start_monotonic) * 1000),
        _preview(response.text),
    )
    return ChunkResult(segment=segment, response=response)


async def transcribe_in_batches(
    segments: Sequence[Segment],
    operation: ChunkOperation,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    provider_name: str = "",
    on_chunk: Optional[ChunkCallback] = None,
) -> List[ChunkResult]:
    """Run ``operation`` over ``segments`` at most ``concurrency`` at a time.

    Segments are processed in consecutive batches; a batch is fully joined before the
    next one starts. ``result[i]`` always belongs to ``segments[i]``. An operation that
    raises produces an empty-text placeholder for its slot instead of failing the call.
    """
    total = len(segments)
    if total == 0:
        return []
    batch_size = max(1, int(concurrency))
    results: List[Optional[ChunkResult]] = [None] * total

    async def _slot(index: int) -> None:
        result = await _run_one(operation, index, segments[index], total, provider_name)
        results[index] = result
        if on_chunk is None:
            return
        try:
            on_chunk(index, total, result)
        except Exception as e:
            logger.warning(
                "progress callback failed chunk_index=%s/%s provider=%s error=%r",
                index + 1,
                total,
                provider_name,
                e,
            )

    for batch_start in range(0, total, batch_size):
        batch_end = min(batch_start + batch_size, total)
        await asyncio.gather(*(_slot(i) for i in range(batch_start, batch_end)))

    out: List[ChunkResult] = []
    for index, item in enumerate(results):
        out.append(item if item is not None else ChunkResult(
            segment=segments[index], response=placeholder_response(segments[index])
        ))

    degraded = sum(1 for item in out if not item.text.strip())
    logger.info(
        "chunk batch finished provider=%s chunks=%s empty=%s concurrency=%s",
        provider_name,
        total,
        degraded,
        batch_size,
    )
    return out
