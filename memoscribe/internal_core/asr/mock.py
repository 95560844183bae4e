from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from ..contracts import ChunkResult, Segment, TranscriptionResponse
from .base import ChunkCallback, TranscriptionBackend, validate_language
from .controller import DEFAULT_CONCURRENCY, transcribe_in_batches


class MockTranscriptionBackend(TranscriptionBackend):
    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self._counter = 0
        self._concurrency = max(1, int(concurrency))

    def name(self) -> str:
        return "mock"

    def _next(self, duration: Optional[float], language: Optional[str]) -> TranscriptionResponse:
        self._counter += 1
        return TranscriptionResponse(
            text=f"(mock) simulated transcript for chunk {self._counter}.",
            detected_language=language or "en",
            confidence=1.0,
            duration=duration,
        )

    async def transcribe_file(
        self, audio_path: Path | str, language: Optional[str] = None
    ) -> TranscriptionResponse:
        validate_language(language, self.name())
        return self._next(None, language)

    async def transcribe_chunks(
        self,
        audio_path: Path | str,
        segments: Sequence[Segment],
        language: Optional[str] = None,
        *,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> list[ChunkResult]:
        validate_language(language, self.name())

        async def _operation(index: int, segment: Segment) -> TranscriptionResponse:
            return self._next(segment.duration, language)

        return await transcribe_in_batches(
            segments,
            _operation,
            concurrency=self._concurrency,
            provider_name=self.name(),
            on_chunk=on_chunk,
        )
