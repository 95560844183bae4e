from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from ..audio_utils import cut_wav_range, ffmpeg_cut_range
from ..contracts import AudioAsset, Segment
from .base import ExportFailure

logger = logging.getLogger(__name__)

_MIN_CHUNK_SEC = 0.01


def _safe_unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("could not remove chunk file %s: %s", path, e)


class ChunkExporter:
    """Materializes one time range of a recording as an uploadable file."""

    def __init__(self, tmp_dir: Path, chunk_format: str = "m4a"):
        self._tmp_dir = Path(tmp_dir)
        self._format = (chunk_format or "m4a").lower().lstrip(".")

    @property
    def tmp_dir(self) -> Path:
        return self._tmp_dir

    def _target(self, asset: AudioAsset, index: int) -> Path:
        # WAV sources are cut in-process and stay WAV.
        ext = "wav" if asset.path.suffix.lower() == ".wav" else self._format
        return self._tmp_dir / f"chunk_{index}_{uuid.uuid4().hex}.{ext}"

    def _export_sync(self, asset: AudioAsset, segment: Segment, target: Path) -> Path:
        start = max(0.0, min(segment.start_time, asset.duration_sec))
        end = max(0.0, min(segment.end_time, asset.duration_sec))
        if end - start <= _MIN_CHUNK_SEC:
            raise ExportFailure(
                f"Invalid segment range {segment.start_time:.2f}-{segment.end_time:.2f}s "
                f"for asset of {asset.duration_sec:.2f}s"
            )
        try:
            self._tmp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExportFailure(f"Cannot create chunk directory: {self._tmp_dir} ({e})")

        _safe_unlink(target)
        try:
            if asset.path.suffix.lower() == ".wav":
                cut_wav_range(asset.path, target, start, end)
            else:
                ffmpeg_cut_range(asset.path, target, start, end)
        except Exception as e:
            _safe_unlink(target)
            raise ExportFailure(f"Chunk export failed: {e}")

        if not target.exists() or target.stat().st_size == 0:
            _safe_unlink(target)
            raise ExportFailure("Chunk export produced no output")
        return target

    async def export(self, asset: AudioAsset, segment: Segment, index: int = 0) -> Path:
        target = self._target(asset, index)
        return await asyncio.to_thread(self._export_sync, asset, segment, target)

    @asynccontextmanager
    async def exported(self, asset: AudioAsset, segment: Segment, index: int = 0) -> AsyncIterator[Path]:
        path = await self.export(asset, segment, index)
        try:
            yield path
        finally:
            _safe_unlink(path)
