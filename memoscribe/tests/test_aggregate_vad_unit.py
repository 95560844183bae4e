from pathlib import Path
from typing import Optional

import numpy as np
import pytest

from memoscribe.asr.aggregate import aggregate_chunks
from memoscribe.asr.vad import VADConfig, detect_speech_in_samples, detect_voice_segments
from memoscribe.internal_core.audio_utils import write_wav_mono_float32
from memoscribe.internal_core.contracts import ChunkResult, Segment, TranscriptionResponse


def _chunk(start: float, end: float, text: str, confidence: Optional[float] = None) -> ChunkResult:
    return ChunkResult(
        segment=Segment(start_time=start, end_time=end),
        response=TranscriptionResponse(text=text, confidence=confidence),
    )


def _speech_then_silence(pattern: list[tuple[float, float]], rate: int = 16000) -> np.ndarray:
    """Build audio from ``(seconds, amplitude)`` pieces; amplitude 0 is silence."""
    parts = []
    for seconds, amplitude in pattern:
        n = int(seconds * rate)
        t = np.arange(n, dtype=np.float32) / rate
        parts.append((amplitude * np.sin(2 * np.pi * 300.0 * t)).astype(np.float32))
    return np.concatenate(parts)


def test_aggregate_chunks_joins_with_spaces_and_capitalizes() -> None:
    results = [
        _chunk(0.0, 1.0, "hello there"),
        _chunk(1.2, 2.0, "general kenobi"),
        _chunk(2.1, 2.5, ", indeed"),
    ]

    transcript = aggregate_chunks(results)

    assert transcript.text == "Hello there general kenobi, indeed"
    assert transcript.processed_chunks == 3
    assert transcript.total_chunks == 3
    assert transcript.failed_indices == []


def test_aggregate_chunks_inserts_sentence_break_on_long_pause() -> None:
    results = [
        _chunk(0.0, 1.0, "first thought"),
        _chunk(2.5, 3.0, "second thought"),
        _chunk(4.5, 5.0, "third?"),
        _chunk(7.0, 8.0, "fourth"),
    ]

    assert aggregate_chunks(results).text == "First thought. second thought. third? fourth"


def test_aggregate_chunks_sorts_by_start_and_reports_empty_slots() -> None:
    results = [
        _chunk(2.0, 3.0, "later"),
        _chunk(0.0, 1.0, ""),
        _chunk(1.0, 2.0, "earlier"),
    ]

    transcript = aggregate_chunks(results)

    assert transcript.text == "Earlier later"
    assert transcript.failed_indices == [1]
    assert transcript.confidence == pytest.approx(2 / 3)


def test_aggregate_chunks_prefers_reported_confidence() -> None:
    results = [_chunk(0.0, 1.0, "a", 0.9), _chunk(1.0, 2.0, "b", 0.7), _chunk(2.0, 3.0, "", 0.1)]

    assert aggregate_chunks(results).confidence == pytest.approx(0.8)


def test_aggregate_chunks_empty_input() -> None:
    transcript = aggregate_chunks([])

    assert transcript.text == ""
    assert transcript.confidence == 0.0
    assert transcript.total_chunks == 0


def test_detect_speech_splits_on_silence_gaps() -> None:
    audio = _speech_then_silence([(1.0, 0.3), (0.5, 0.0), (1.0, 0.3), (0.5, 0.0)])

    segments = detect_speech_in_samples(audio, 16000, VADConfig())

    assert len(segments) == 2
    assert segments[0].start_time == pytest.approx(0.0)
    assert segments[0].end_time == pytest.approx(1.0, abs=0.07)
    assert segments[1].start_time == pytest.approx(1.5, abs=0.07)
    assert segments[1].end_time == pytest.approx(2.5, abs=0.1)
    assert all(seg.confidence is not None and 0.0 < seg.confidence <= 1.0 for seg in segments)


def test_detect_speech_drops_short_bursts_and_bridges_short_pauses() -> None:
    audio = _speech_then_silence([(0.2, 0.3), (0.6, 0.0), (0.6, 0.3), (0.1, 0.0), (0.6, 0.3), (0.6, 0.0)])

    segments = detect_speech_in_samples(audio, 16000, VADConfig())

    assert len(segments) == 1
    assert segments[0].start_time == pytest.approx(0.8, abs=0.07)
    assert segments[0].end_time == pytest.approx(2.1, abs=0.07)


def test_detect_speech_closes_trailing_segment_at_end_of_audio() -> None:
    audio = _speech_then_silence([(0.5, 0.0), (1.0, 0.3)])

    segments = detect_speech_in_samples(audio, 16000, VADConfig())

    assert len(segments) == 1
    assert segments[0].end_time == pytest.approx(1.5)


def test_detect_speech_silence_and_empty_input() -> None:
    assert detect_speech_in_samples(np.zeros(32000, dtype=np.float32), 16000) == []
    assert detect_speech_in_samples(np.zeros(0, dtype=np.float32), 16000) == []


def test_vad_config_enforces_minimum_window() -> None:
    assert VADConfig(window_size=64).window == 256


def test_detect_voice_segments_reads_file(tmp_path: Path) -> None:
    path = tmp_path / "memo.wav"
    write_wav_mono_float32(path, _speech_then_silence([(0.5, 0.0), (1.0, 0.3), (0.5, 0.0)]), 16000)

    segments = detect_voice_segments(path)

    assert len(segments) == 1
    assert segments[0].start_time == pytest.approx(0.5, abs=0.07)
