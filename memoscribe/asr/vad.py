from __future__ import annotations

"""
Energy-based voice activity detection for splitting a memo into speech segments.

Design intent:
- Provide a default segment source when callers do not bring their own.
- Stay dependency-light: windowed RMS over decoded mono samples.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from memoscribe.internal_core.audio_utils import load_audio_mono_float32, rms_db
from memoscribe.internal_core.contracts import Segment

logger = logging.getLogger(__name__)

_MIN_WINDOW = 256


@dataclass(frozen=True)
class VADConfig:
    silence_threshold_db: float = -45.0
    min_speech_sec: float = 0.5
    min_silence_sec: float = 0.3
    window_size: int = 1024

    @property
    def window(self) -> int:
        return max(_MIN_WINDOW, int(self.window_size))


def _confidence(avg_db: float, threshold_db: float) -> float:
    # 20 dB above the threshold maps to full confidence.
    return max(0.0, min(1.0, (avg_db - threshold_db) / 20.0))


def detect_speech_in_samples(
    samples: np.ndarray,
    sample_rate: int,
    config: VADConfig | None = None,
) -> list[Segment]:
    cfg = config or VADConfig()
    audio = np.asarray(samples, dtype=np.float32).reshape(-1)
    if sample_rate <= 0 or audio.size == 0:
        return []

    window = cfg.window
    rate = float(sample_rate)
    segments: list[Segment] = []

    in_speech = False
    seg_start = 0.0
    db_sum = 0.0
    db_windows = 0
    silence = 0.0

    def _emit(end_time: float) -> None:
        if end_time - seg_start >= cfg.min_speech_sec and db_windows > 0 and end_time > seg_start:
            segments.append(
                Segment(
                    start_time=seg_start,
                    end_time=end_time,
                    confidence=_confidence(db_sum / db_windows, cfg.silence_threshold_db),
                )
            )

    for offset in range(0, audio.size, window):
        frame = audio[offset : offset + window]
        frame_sec = frame.size / rate
        window_end = (offset + frame.size) / rate
        level = rms_db(frame)

        if level >= cfg.silence_threshold_db:
            if not in_speech:
                in_speech = True
                seg_start = window_end - frame_sec
                db_sum = 0.0
                db_windows = 0
            silence = 0.0
            db_sum += level
            db_windows += 1
        elif in_speech:
            silence += frame_sec
            if silence >= cfg.min_silence_sec:
                _emit(window_end - silence)
                in_speech = False
                silence = 0.0

    if in_speech:
        _emit(audio.size / rate)
    return segments


def detect_voice_segments(audio_path: Path | str, config: VADConfig | None = None) -> list[Segment]:
    """Decode ``audio_path`` to mono and return its speech segments in time order."""
    path = Path(audio_path).expanduser()
    samples, sample_rate = load_audio_mono_float32(path)
    segments = detect_speech_in_samples(samples, sample_rate, config)
    logger.info("vad detected segments=%s file=%s", len(segments), path.name)
    return segments
