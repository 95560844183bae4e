from __future__ import annotations

from .base import (
    AudioProcessingFailed,
    ChunkCallback,
    ExportFailure,
    InitializationFailed,
    InvalidLanguageCode,
    ModelNotAvailable,
    NoSpeechDetected,
    ServerError,
    TranscriptionBackend,
    TranscriptionError,
    TranscriptionFailed,
    is_valid_language_code,
    validate_language,
)
from .cloud import CloudTranscriptionBackend, parse_transcription_body, should_retry_without_language
from .controller import placeholder_response, transcribe_in_batches
from .exporter import ChunkExporter
from .mock import MockTranscriptionBackend
from .on_device import OnDeviceTranscriptionBackend

__all__ = [
    "AudioProcessingFailed",
    "ChunkCallback",
    "ChunkExporter",
    "CloudTranscriptionBackend",
    "ExportFailure",
    "InitializationFailed",
    "InvalidLanguageCode",
    "MockTranscriptionBackend",
    "ModelNotAvailable",
    "NoSpeechDetected",
    "OnDeviceTranscriptionBackend",
    "ServerError",
    "TranscriptionBackend",
    "TranscriptionError",
    "TranscriptionFailed",
    "is_valid_language_code",
    "parse_transcription_body",
    "placeholder_response",
    "should_retry_without_language",
    "transcribe_in_batches",
    "validate_language",
]
