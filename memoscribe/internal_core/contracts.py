from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

BackendState = Literal["uninitialized", "initializing", "ready"]


class Segment(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    start_time: float = Field(ge=0.0)
    end_time: float
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_window(self) -> "Segment":
        if self.end_time <= self.start_time:
            raise ValueError("Segment.end_time must be > Segment.start_time")
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class TranscriptionResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = ""
    detected_language: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    avg_logprob: Optional[float] = None
    duration: Optional[float] = None


class ChunkResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    segment: Segment
    response: TranscriptionResponse

    @property
    def text(self) -> str:
        return self.response.text


class AudioAsset(BaseModel):
    """Read-only handle to a source recording; never deleted by the pipeline."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: Path
    duration_sec: float = Field(ge=0.0)
    sample_rate: int = Field(gt=0)
    channels: int = Field(gt=0)

    @classmethod
    def open(cls, path: Path | str) -> "AudioAsset":
        from .audio_utils import read_audio_info

        src = Path(path).expanduser()
        duration, rate, channels = read_audio_info(src)
        return cls(path=src, duration_sec=duration, sample_rate=rate, channels=channels)


class AggregatedTranscript(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    processed_chunks: int = Field(ge=0)
    total_chunks: int = Field(ge=0)
    failed_indices: List[int] = Field(default_factory=list)
