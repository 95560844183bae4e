from __future__ import annotations

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..contracts import ChunkResult, Segment, TranscriptionResponse

_LANGUAGE_CODE_RE = re.compile(r"^[a-z]{2}$")

ChunkCallback = Callable[[int, int, ChunkResult], None]


class TranscriptionError(RuntimeError):
    code = "TRANSCRIPTION_ERROR"
    retryable = False

    def __init__(self, message: str, provider_name: str = "", *, code: Optional[str] = None):
        super().__init__(message)
        self.code = code or type(self).code
        self.message = message
        self.provider_name = provider_name


class ExportFailure(TranscriptionError):
    code = "EXPORT_FAILED"


class InvalidLanguageCode(TranscriptionError):
    code = "INVALID_LANGUAGE_CODE"

    def __init__(self, language: str, provider_name: str = ""):
        super().__init__(f"Invalid language code: {language!r}", provider_name)
        self.language = language


class ServerError(TranscriptionError):
    code = "SERVER_ERROR"
    retryable = True

    def __init__(self, status: int, body: str, provider_name: str = ""):
        super().__init__(f"Server error {status}: {body}", provider_name)
        self.status = int(status)
        self.body = body


class ModelNotAvailable(TranscriptionError):
    code = "MODEL_NOT_AVAILABLE"


class InitializationFailed(TranscriptionError):
    code = "INITIALIZATION_FAILED"


class AudioProcessingFailed(TranscriptionError):
    code = "AUDIO_PROCESSING_FAILED"


class NoSpeechDetected(TranscriptionError):
    code = "NO_SPEECH_DETECTED"


class TranscriptionFailed(TranscriptionError):
    code = "TRANSCRIPTION_FAILED"
    retryable = True

    def __init__(self, message: str, provider_name: str = "", *, cause: Optional[BaseException] = None):
        super().__init__(message, provider_name)
        self.cause = cause


def is_valid_language_code(code: object) -> bool:
    return isinstance(code, str) and bool(_LANGUAGE_CODE_RE.match(code))


def validate_language(language: Optional[str], provider_name: str = "") -> Optional[str]:
    """Return the hint unchanged, or raise InvalidLanguageCode. ``None`` means auto-detect."""
    if language is None:
        return None
    if not is_valid_language_code(language):
        raise InvalidLanguageCode(language, provider_name)
    return language


class TranscriptionBackend(ABC):
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def transcribe_file(
        self, audio_path: Path | str, language: Optional[str] = None
    ) -> TranscriptionResponse: ...

    @abstractmethod
    async def transcribe_chunks(
        self,
        audio_path: Path | str,
        segments: Sequence[Segment],
        language: Optional[str] = None,
        *,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> list[ChunkResult]: ...
