from pathlib import Path

import numpy as np
import pytest

from memoscribe.internal_core.audio_utils import (
    load_audio_at_rate,
    load_audio_mono_float32,
    read_audio_info,
    resample_linear,
    rms_db,
    slice_samples,
    write_wav_mono_float32,
)


def test_resample_linear_44100_to_16000_length_and_bounds() -> None:
    rng = np.random.default_rng(3)
    source = rng.uniform(-0.7, 0.4, size=44100).astype(np.float32)

    out = resample_linear(source, 44100, 16000)

    assert out.dtype == np.float32
    assert out.size == 16000
    assert float(out.min()) >= float(source.min())
    assert float(out.max()) <= float(source.max())


def test_resample_linear_rounds_output_length() -> None:
    assert resample_linear(np.zeros(1000, dtype=np.float32), 48000, 16000).size == 333
    assert resample_linear(np.zeros(10, dtype=np.float32), 8000, 16000).size == 20


def test_resample_linear_same_rate_and_invalid_rate() -> None:
    source = np.array([0.1, -0.2, 0.3], dtype=np.float32)

    assert np.array_equal(resample_linear(source, 16000, 16000), source)
    with pytest.raises(ValueError):
        resample_linear(source, 0, 16000)


def test_slice_samples_clamps_and_never_raises() -> None:
    samples = np.arange(16000, dtype=np.float32)

    assert slice_samples(samples, 0.5, 0.75, 16000).size == 4000
    assert slice_samples(samples, 0.9, 5.0, 16000).size == 1600
    assert slice_samples(samples, 2.0, 3.0, 16000).size == 0
    assert slice_samples(samples, 0.6, 0.6, 16000).size == 0
    assert slice_samples(samples, 0.7, 0.2, 16000).size == 0
    assert slice_samples(samples, float("nan"), 1.0, 16000).size == 0
    assert slice_samples(np.zeros(0, dtype=np.float32), 0.0, 1.0, 16000).size == 0


def test_load_audio_at_rate_resamples_wav(tmp_path: Path) -> None:
    path = tmp_path / "cd.wav"
    write_wav_mono_float32(path, np.full(44100, 0.5, dtype=np.float32), 44100)

    duration, rate, channels = read_audio_info(path)
    audio = load_audio_at_rate(path, 16000)

    assert duration == pytest.approx(1.0)
    assert (rate, channels) == (44100, 1)
    assert audio.size == 16000
    assert float(np.abs(audio - 0.5).max()) < 1.0e-3


def test_load_audio_mono_float32_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_audio_mono_float32(tmp_path / "nope.wav")


def test_rms_db_levels() -> None:
    assert rms_db(np.zeros(0, dtype=np.float32)) == -120.0
    assert rms_db(np.ones(512, dtype=np.float32)) == pytest.approx(0.0, abs=1.0e-6)
    assert rms_db(np.full(512, 0.1, dtype=np.float32)) == pytest.approx(-20.0, abs=1.0e-4)
