from __future__ import annotations

"""
HTTP surface for the memoscribe transcription pipeline.

Design intent:
- Keep API orchestration thin and typed.
- Delegate backend choice, chunking and aggregation to the pipeline.
- Map pipeline errors to predictable status codes.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from memoscribe.asr.pipeline import PipelineConfigError, TranscriptionPipeline
from memoscribe.internal_core import load_config
from memoscribe.internal_core.asr import (
    AudioProcessingFailed,
    InitializationFailed,
    InvalidLanguageCode,
    ModelNotAvailable,
    NoSpeechDetected,
    OnDeviceTranscriptionBackend,
    TranscriptionError,
)
from memoscribe.internal_core.contracts import AggregatedTranscript, ChunkResult, Segment


def _log_level(name: str) -> int:
    level = logging.getLevelName((name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


logging.basicConfig(
    level=_log_level(load_config().MEMO_LOG_LEVEL),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


class TranscribeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    audio_path: str = Field(min_length=1)
    segments: Optional[list[Segment]] = None
    detect_segments: bool = False
    language: Optional[str] = None
    backend: Optional[str] = None


class TranscribeResponse(BaseModel):
    backend: str
    results: list[ChunkResult] = Field(default_factory=list)
    transcript: AggregatedTranscript
    debug: dict[str, Any] = Field(default_factory=dict)


app = FastAPI(title="memoscribe transcription service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_pipeline() -> TranscriptionPipeline:
    existing = getattr(app.state, "transcription_pipeline", None)
    if existing is not None:
        return existing
    created = TranscriptionPipeline()
    setattr(app.state, "transcription_pipeline", created)
    return created


def _error_status(exc: TranscriptionError) -> int:
    if isinstance(exc, InvalidLanguageCode):
        return 400
    if isinstance(exc, (ModelNotAvailable, InitializationFailed)):
        return 503
    if isinstance(exc, (AudioProcessingFailed, NoSpeechDetected)):
        return 422
    return 502


@app.get("/health")
async def health() -> dict[str, str]:
    try:
        pipeline = _get_pipeline()
    except PipelineConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    local_state = "uninitialized"
    local = pipeline.peek_backend("local")
    if isinstance(local, OnDeviceTranscriptionBackend):
        local_state = local.state
    return {
        "status": "ok",
        "primary": pipeline.primary,
        "fallback": pipeline.fallback or "none",
        "local_model_state": local_state,
    }


@app.post("/transcribe", response_model=TranscribeResponse)
async def transcribe(payload: TranscribeRequest) -> TranscribeResponse:
    try:
        pipeline = _get_pipeline()
        outcome = await pipeline.transcribe_recording(
            payload.audio_path,
            segments=payload.segments,
            language=payload.language,
            detect_segments=payload.detect_segments,
            backend=payload.backend,
        )
    except PipelineConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TranscriptionError as exc:
        status = _error_status(exc)
        logger.warning("transcribe failed status=%s code=%s detail=%s", status, exc.code, exc.message)
        raise HTTPException(status_code=status, detail=f"{exc.code}: {exc.message}") from exc
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=422, detail=f"Audio could not be processed: {exc}") from exc

    return TranscribeResponse(
        backend=outcome.backend,
        results=outcome.results,
        transcript=outcome.transcript,
        debug=outcome.debug,
    )
