from __future__ import annotations

"""
Backend selection and the primary/fallback transcription plan.

Design intent:
- Pick backends from configuration, never by inspecting types at call sites.
- Keep backend fallback narrow: only a backend that cannot start hands the call over.
- Re-run in English only when nothing chose a language and the score is low.
- Return ordered chunk results plus one aggregated transcript per recording.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from memoscribe.asr.aggregate import aggregate_chunks
from memoscribe.asr.vad import VADConfig, detect_voice_segments
from memoscribe.internal_core import MemoConfig, load_config
from memoscribe.internal_core.asr import (
    ChunkCallback,
    ChunkExporter,
    CloudTranscriptionBackend,
    InitializationFailed,
    MockTranscriptionBackend,
    ModelNotAvailable,
    NoSpeechDetected,
    OnDeviceTranscriptionBackend,
    TranscriptionBackend,
    TranscriptionError,
    validate_language,
)
from memoscribe.internal_core.audio_utils import read_audio_info
from memoscribe.internal_core.contracts import AggregatedTranscript, ChunkResult, Segment
from memoscribe.internal_core.retry import RetryPolicy

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = {"cloud", "local", "mock"}
_DISABLED_BACKEND_NAMES = {"", "none", "disabled", "off", "false", "0"}
FALLBACK_LANGUAGE = "en"
SCORE_TIE_MARGIN = 0.02


class PipelineConfigError(ValueError):
    """Raised when the configured backend plan names an unknown backend."""


@dataclass(frozen=True)
class RecordingTranscript:
    backend: str
    results: list[ChunkResult]
    transcript: AggregatedTranscript
    debug: dict[str, Any] = field(default_factory=dict)


def _normalize_backend_name(name: str | None) -> str:
    return (name or "").strip().lower()


def resolve_backend_plan(cfg: MemoConfig, override: str | None = None) -> tuple[str, Optional[str]]:
    """
    Returns ``(primary_name, fallback_name)``; fallback is None when disabled.
    An explicit override forces that backend and disables fallback.
    """

    forced = _normalize_backend_name(override)
    if forced:
        if forced not in SUPPORTED_BACKENDS:
            raise PipelineConfigError(f"Unsupported transcription backend: {forced}")
        return forced, None

    primary = _normalize_backend_name(cfg.MEMO_ASR_PRIMARY) or "cloud"
    if primary not in SUPPORTED_BACKENDS:
        raise PipelineConfigError(f"Unsupported transcription backend: {primary}")

    fallback = _normalize_backend_name(cfg.MEMO_ASR_FALLBACK)
    if fallback in _DISABLED_BACKEND_NAMES or fallback == primary:
        return primary, None
    if fallback not in SUPPORTED_BACKENDS:
        raise PipelineConfigError(f"Unsupported fallback transcription backend: {fallback}")
    return primary, fallback


def build_backend(name: str, cfg: MemoConfig) -> TranscriptionBackend:
    name = _normalize_backend_name(name)
    retry_policy = RetryPolicy.from_config(cfg)
    if name == "cloud":
        return CloudTranscriptionBackend(
            cfg.MEMO_API_BASE_URL,
            timeout_sec=cfg.MEMO_TRANSCRIBE_TIMEOUT_SEC,
            exporter=ChunkExporter(cfg.tmp_dir_path(), chunk_format=cfg.MEMO_CHUNK_FORMAT),
            retry_policy=retry_policy,
            concurrency=cfg.MEMO_CHUNK_CONCURRENCY,
        )
    if name == "local":
        return OnDeviceTranscriptionBackend(
            cfg.model_root_path(),
            cfg.MEMO_LOCAL_MODEL,
            device=cfg.MEMO_LOCAL_DEVICE or None,
            fp16=cfg.MEMO_LOCAL_FP16,
            retry_policy=retry_policy,
            concurrency=cfg.MEMO_CHUNK_CONCURRENCY,
            release_after_transcription=cfg.MEMO_RELEASE_LOCAL_MODEL,
        )
    if name == "mock":
        return MockTranscriptionBackend(concurrency=cfg.MEMO_CHUNK_CONCURRENCY)
    raise PipelineConfigError(f"Unsupported transcription backend: {name}")


def _vad_config(cfg: MemoConfig) -> VADConfig:
    return VADConfig(
        silence_threshold_db=cfg.MEMO_VAD_SILENCE_DB,
        min_speech_sec=cfg.MEMO_VAD_MIN_SPEECH_SEC,
        min_silence_sec=cfg.MEMO_VAD_MIN_SILENCE_SEC,
        window_size=cfg.MEMO_VAD_WINDOW,
    )


def _dominant_language(results: Sequence[ChunkResult]) -> Optional[str]:
    counts = Counter(
        (item.response.detected_language or "").strip().lower()
        for item in results
        if item.text.strip() and item.response.detected_language
    )
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def prefer_fallback_transcript(
    primary: AggregatedTranscript,
    primary_language: Optional[str],
    fallback: AggregatedTranscript,
) -> bool:
    """
    True when the English re-run should replace the auto-detected transcript.

    A clearly higher score wins. Within the tie margin, English wins over a
    non-English detection.
    """

    diff = fallback.confidence - primary.confidence
    if diff > SCORE_TIE_MARGIN:
        return True
    if abs(diff) <= SCORE_TIE_MARGIN:
        return primary_language != FALLBACK_LANGUAGE
    return False


class TranscriptionPipeline:
    def __init__(
        self,
        cfg: Optional[MemoConfig] = None,
        *,
        builder: Optional[Callable[[str, MemoConfig], TranscriptionBackend]] = None,
    ):
        self.cfg = cfg or load_config()
        self._builder = builder or build_backend
        self._backends: dict[str, TranscriptionBackend] = {}
        self._lock = threading.Lock()
        self.primary, self.fallback = resolve_backend_plan(self.cfg)

    def backend(self, name: str) -> TranscriptionBackend:
        key = _normalize_backend_name(name)
        with self._lock:
            existing = self._backends.get(key)
            if existing is not None:
                return existing
            created = self._builder(key, self.cfg)
            self._backends[key] = created
            return created

    def peek_backend(self, name: str) -> Optional[TranscriptionBackend]:
        return self._backends.get(_normalize_backend_name(name))

    def detect_segments(self, audio_path: Path | str) -> list[Segment]:
        return detect_voice_segments(audio_path, _vad_config(self.cfg))

    def _whole_file_segment(self, audio_path: Path | str) -> list[Segment]:
        duration, _, _ = read_audio_info(Path(audio_path).expanduser())
        if duration <= 0.0:
            return []
        return [Segment(start_time=0.0, end_time=duration)]

    async def transcribe_recording(
        self,
        audio_path: Path | str,
        segments: Optional[Sequence[Segment]] = None,
        language: Optional[str] = None,
        *,
        detect_segments: bool = False,
        backend: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> RecordingTranscript:
        """
        Transcribe one recording into ordered chunk results and an aggregated transcript.

        Segment source precedence: explicit ``segments``, then VAD when ``detect_segments``,
        then the whole file as one segment. ``language=None`` uses the configured preference.

        With no language at all, a transcript scoring below
        ``MEMO_LANGUAGE_FALLBACK_THRESHOLD`` is re-run in English on the same backend
        and the better of the two is kept.
        """

        path = Path(audio_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Audio file not found: {path}")
        hint = language if language is not None else self.cfg.preferred_language()
        validate_language(hint)

        if segments is not None:
            plan_segments = list(segments)
            segment_source = "provided"
        elif detect_segments:
            plan_segments = await asyncio.to_thread(self.detect_segments, path)
            segment_source = "vad"
            if not plan_segments:
                raise NoSpeechDetected(f"No speech detected in {path.name}", "vad")
        else:
            plan_segments = await asyncio.to_thread(self._whole_file_segment, path)
            segment_source = "whole_file"

        primary, fallback = resolve_backend_plan(self.cfg, backend)
        used = primary
        fallback_reason = ""
        try:
            results = await self.backend(primary).transcribe_chunks(
                path, plan_segments, hint, on_chunk=on_chunk
            )
        except (ModelNotAvailable, InitializationFailed) as e:
            if fallback is None:
                raise
            logger.warning(
                "primary backend %s unavailable (%s), falling back to %s",
                primary,
                e.code,
                fallback,
            )
            used = fallback
            fallback_reason = e.message
            results = await self.backend(fallback).transcribe_chunks(
                path, plan_segments, hint, on_chunk=on_chunk
            )

        transcript = aggregate_chunks(results)
        language_fallback = "skipped"
        threshold = self.cfg.MEMO_LANGUAGE_FALLBACK_THRESHOLD
        if hint is None and plan_segments and transcript.confidence < threshold:
            detected = _dominant_language(results)
            logger.info(
                "low confidence %.2f < %.2f (detected=%s), retrying in %s",
                transcript.confidence,
                threshold,
                detected or "unknown",
                FALLBACK_LANGUAGE,
            )
            try:
                english_results = await self.backend(used).transcribe_chunks(
                    path, plan_segments, FALLBACK_LANGUAGE
                )
            except TranscriptionError as e:
                logger.warning("%s fallback failed on %s (%s), keeping primary", FALLBACK_LANGUAGE, used, e.code)
                language_fallback = "failed"
            else:
                english = aggregate_chunks(english_results)
                if prefer_fallback_transcript(transcript, detected, english):
                    results, transcript = english_results, english
                    language_fallback = "used"
                else:
                    language_fallback = "rejected"

        logger.info(
            "recording transcribed backend=%s chunks=%s processed=%s confidence=%.2f",
            used,
            transcript.total_chunks,
            transcript.processed_chunks,
            transcript.confidence,
        )
        return RecordingTranscript(
            backend=used,
            results=results,
            transcript=transcript,
            debug={
                "primary": primary,
                "fallback": fallback or "none",
                "fallback_used": used != primary,
                "fallback_reason": fallback_reason,
                "segment_source": segment_source,
                "language": hint or "auto",
                "language_fallback": language_fallback,
            },
        )
