import asyncio
import wave
from pathlib import Path

import numpy as np
import pytest

from memoscribe.internal_core.asr import exporter as exporter_module
from memoscribe.internal_core.asr.base import ExportFailure
from memoscribe.internal_core.asr.exporter import ChunkExporter
from memoscribe.internal_core.audio_utils import write_wav_mono_float32
from memoscribe.internal_core.contracts import AudioAsset, Segment


def _asset(tmp_path: Path, seconds: float = 2.0, rate: int = 16000) -> AudioAsset:
    path = tmp_path / "memo.wav"
    write_wav_mono_float32(path, np.full(int(seconds * rate), 0.25, dtype=np.float32), rate)
    return AudioAsset.open(path)


def test_audio_asset_open_reads_wav_header(tmp_path: Path) -> None:
    asset = _asset(tmp_path, seconds=1.5)

    assert asset.duration_sec == pytest.approx(1.5)
    assert asset.sample_rate == 16000
    assert asset.channels == 1


def test_export_writes_only_requested_range(tmp_path: Path) -> None:
    asset = _asset(tmp_path)
    exporter = ChunkExporter(tmp_path / "chunks")

    out = asyncio.run(exporter.export(asset, Segment(start_time=0.5, end_time=1.25), index=4))

    assert out.parent == tmp_path / "chunks"
    assert out.name.startswith("chunk_4_")
    assert out.suffix == ".wav"
    with wave.open(str(out), "rb") as wf:
        assert wf.getnframes() == 12000
    out.unlink()


def test_export_clamps_range_to_asset_duration(tmp_path: Path) -> None:
    asset = _asset(tmp_path, seconds=1.0)
    exporter = ChunkExporter(tmp_path / "chunks")

    out = asyncio.run(exporter.export(asset, Segment(start_time=0.5, end_time=5.0)))

    with wave.open(str(out), "rb") as wf:
        assert wf.getnframes() == 8000
    out.unlink()


def test_export_range_past_end_fails(tmp_path: Path) -> None:
    asset = _asset(tmp_path, seconds=1.0)
    exporter = ChunkExporter(tmp_path / "chunks")

    with pytest.raises(ExportFailure):
        asyncio.run(exporter.export(asset, Segment(start_time=3.0, end_time=4.0)))
    assert not (tmp_path / "chunks").exists() or list((tmp_path / "chunks").iterdir()) == []


def test_exported_context_removes_file_on_success(tmp_path: Path) -> None:
    asset = _asset(tmp_path)
    exporter = ChunkExporter(tmp_path / "chunks")
    seen: list[Path] = []

    async def run() -> None:
        async with exporter.exported(asset, Segment(start_time=0.0, end_time=1.0)) as path:
            assert path.exists()
            seen.append(path)

    asyncio.run(run())

    assert not seen[0].exists()
    assert asset.path.exists()


def test_exported_context_removes_file_when_body_raises(tmp_path: Path) -> None:
    asset = _asset(tmp_path)
    exporter = ChunkExporter(tmp_path / "chunks")
    seen: list[Path] = []

    async def run() -> None:
        async with exporter.exported(asset, Segment(start_time=0.0, end_time=1.0)) as path:
            seen.append(path)
            raise RuntimeError("upload failed")

    with pytest.raises(RuntimeError):
        asyncio.run(run())

    assert not seen[0].exists()
    assert list((tmp_path / "chunks").iterdir()) == []


def test_export_failure_removes_partial_output(tmp_path: Path, monkeypatch) -> None:
    asset = _asset(tmp_path)
    exporter = ChunkExporter(tmp_path / "chunks")

    def broken_cut(src: Path, dest: Path, start_sec: float, end_sec: float) -> Path:
        dest.write_bytes(b"partial")
        raise OSError("disk full")

    monkeypatch.setattr(exporter_module, "cut_wav_range", broken_cut)

    with pytest.raises(ExportFailure) as exc_info:
        asyncio.run(exporter.export(asset, Segment(start_time=0.0, end_time=1.0)))

    assert "disk full" in exc_info.value.message
    assert list((tmp_path / "chunks").iterdir()) == []


def test_export_non_wav_uses_configured_format(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "memo.m4a"
    source.write_bytes(b"not really audio")
    asset = AudioAsset(path=source, duration_sec=2.0, sample_rate=44100, channels=1)
    exporter = ChunkExporter(tmp_path / "chunks", chunk_format="m4a")
    calls: list[tuple[float, float]] = []

    def fake_ffmpeg(src: Path, dest: Path, start_sec: float, end_sec: float) -> Path:
        calls.append((start_sec, end_sec))
        dest.write_bytes(b"aac")
        return dest

    monkeypatch.setattr(exporter_module, "ffmpeg_cut_range", fake_ffmpeg)

    out = asyncio.run(exporter.export(asset, Segment(start_time=0.5, end_time=1.5)))

    assert out.suffix == ".m4a"
    assert calls == [(0.5, 1.5)]
    out.unlink()
