from __future__ import annotations

import shutil
import subprocess
import wave
from pathlib import Path
from typing import Optional, Tuple

import numpy as np


MODEL_SAMPLE_RATE = 16000

_MIME_TYPES = {
    ".m4a": "audio/m4a",
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".caf": "audio/x-caf",
}


def _which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def mime_type_for(path: Path | str) -> str:
    return _MIME_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def load_wav_info(path: Path) -> Tuple[float, int, int]:
    try:
        with wave.open(str(path), "rb") as wf:
            frames = wf.getnframes()
            rate = wf.getframerate()
            channels = wf.getnchannels()
    except (wave.Error, EOFError) as e:
        raise ValueError(f"Invalid WAV file {path.name}: {e}")
    duration = frames / float(rate) if rate else 0.0
    return duration, rate, channels


def read_audio_info(path: Path) -> Tuple[float, int, int]:
    """Return ``(duration_sec, sample_rate, channels)`` without decoding the whole file."""
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")
    if path.suffix.lower() == ".wav":
        return load_wav_info(path)

    try:
        import miniaudio  # type: ignore
    except Exception:
        raise ValueError(
            f"Cannot inspect {path.suffix} audio without the Python dependency `miniaudio`."
        )
    try:
        info = miniaudio.get_file_info(str(path))
    except Exception as e:
        raise ValueError(f"Unsupported or unreadable audio file {path.name}: {e}")
    return float(info.duration), int(info.sample_rate), int(info.nchannels)


def _read_wav_float32(path: Path) -> Tuple[np.ndarray, int]:
    try:
        with wave.open(str(path), "rb") as wf:
            channels = wf.getnchannels()
            rate = wf.getframerate()
            width = wf.getsampwidth()
            raw = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        raise ValueError(f"Invalid WAV file {path.name}: {e}")
    if width == 2:
        audio = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    elif width == 4:
        audio = np.frombuffer(raw, dtype="<i4").astype(np.float32) / 2147483648.0
    elif width == 1:
        audio = (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    else:
        raise ValueError(f"Unsupported WAV sample width: {width}")
    if channels > 1:
        audio = audio.reshape(-1, channels).mean(axis=1)
    return audio.clip(-1.0, 1.0).astype(np.float32), rate


def load_audio_mono_float32(path: Path) -> Tuple[np.ndarray, int]:
    """Decode a recording to mono float32 at its native sample rate."""
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")
    if path.suffix.lower() == ".wav":
        return _read_wav_float32(path)

    try:
        import miniaudio  # type: ignore
    except Exception:
        raise ValueError(
            f"Cannot decode {path.suffix} audio without the Python dependency `miniaudio`."
        )
    try:
        info = miniaudio.get_file_info(str(path))
        decoded = miniaudio.decode_file(
            str(path),
            output_format=miniaudio.SampleFormat.FLOAT32,
            nchannels=1,
            sample_rate=int(info.sample_rate),
        )
    except Exception as e:
        raise ValueError(f"Audio decode failed: {e}")
    return np.asarray(decoded.samples, dtype=np.float32), int(decoded.sample_rate)


def resample_linear(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Linear-interpolation resampler; not a polyphase filter.

    Output length is ``round(len(samples) * dst_rate / src_rate)`` and every output value
    lies between the source minimum and maximum.
    """
    audio = np.asarray(samples, dtype=np.float32)
    if src_rate <= 0 or dst_rate <= 0:
        raise ValueError(f"Invalid sample rates: {src_rate} -> {dst_rate}")
    if src_rate == dst_rate or audio.size == 0:
        return audio
    out_len = int(round(audio.size * float(dst_rate) / float(src_rate)))
    if out_len <= 0:
        return np.zeros(0, dtype=np.float32)
    if audio.size == 1:
        return np.full(out_len, audio[0], dtype=np.float32)
    positions = np.arange(out_len, dtype=np.float64) * (float(src_rate) / float(dst_rate))
    positions = np.minimum(positions, audio.size - 1)
    return np.interp(positions, np.arange(audio.size, dtype=np.float64), audio).astype(np.float32)


def load_audio_at_rate(path: Path, sample_rate: int = MODEL_SAMPLE_RATE) -> np.ndarray:
    audio, rate = load_audio_mono_float32(path)
    if rate != sample_rate:
        audio = resample_linear(audio, rate, sample_rate)
    return audio


def slice_samples(samples: np.ndarray, start_time: float, end_time: float, sample_rate: int) -> np.ndarray:
    """Index-range slice clamped to ``[0, len]``; a degenerate range yields an empty array."""
    total = int(len(samples))
    try:
        start = int(start_time * sample_rate)
        end = int(end_time * sample_rate)
    except (TypeError, ValueError, OverflowError):
        return np.zeros(0, dtype=np.float32)
    start = max(0, min(start, total))
    end = max(0, min(end, total))
    if start >= end:
        return np.zeros(0, dtype=np.float32)
    return np.asarray(samples[start:end], dtype=np.float32)


def cut_wav_range(src: Path, dest: Path, start_sec: float, end_sec: float) -> Path:
    with wave.open(str(src), "rb") as wf:
        nchannels = wf.getnchannels()
        sampwidth = wf.getsampwidth()
        framerate = wf.getframerate()
        nframes = wf.getnframes()
        start_frame = max(0, min(nframes, int(start_sec * framerate)))
        end_frame = max(start_frame, min(nframes, int(end_sec * framerate)))
        wf.setpos(start_frame)
        raw = wf.readframes(end_frame - start_frame)

    with wave.open(str(dest), "wb") as out_wf:
        out_wf.setnchannels(nchannels)
        out_wf.setsampwidth(sampwidth)
        out_wf.setframerate(framerate)
        out_wf.writeframes(raw)
    return dest


def ffmpeg_cut_range(src: Path, dest: Path, start_sec: float, end_sec: float) -> Path:
    ffmpeg = _which("ffmpeg")
    if not ffmpeg:
        raise ValueError("Chunk export requires `ffmpeg` for non-WAV sources.")
    cmd = [
        ffmpeg,
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-ss",
        f"{start_sec:.3f}",
        "-to",
        f"{end_sec:.3f}",
        "-i",
        str(src),
        "-vn",
        "-ac",
        "1",
    ]
    if dest.suffix.lower() in {".m4a", ".caf"}:
        cmd.extend(["-c:a", "aac"])
    cmd.append(str(dest))
    try:
        subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except subprocess.CalledProcessError as e:
        stderr = (
            e.stderr.decode("utf-8", "ignore")
            if isinstance(e.stderr, (bytes, bytearray))
            else str(e.stderr)
        )
        raise ValueError(f"Chunk export failed via ffmpeg: {stderr.strip() or 'unknown error'}")
    return dest


def write_wav_mono_float32(path: Path, audio: np.ndarray, sample_rate: int = MODEL_SAMPLE_RATE) -> None:
    audio = np.asarray(audio, dtype=np.float32).clip(-1.0, 1.0)
    audio_i16 = (audio * 32767.0).round().astype("<i2")
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(audio_i16.tobytes())


def rms_db(window: np.ndarray) -> float:
    if window.size == 0:
        return -120.0
    x = window.astype(np.float64)
    mean_square = float(np.mean(x * x))
    return float(20.0 * np.log10(np.sqrt(max(mean_square, 1.0e-14))))
