from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Sequence

import numpy as np

from ...utils.model_paths import model_assets_available, resolve_model_folder
from ..audio_utils import MODEL_SAMPLE_RATE, load_audio_at_rate, resample_linear, slice_samples
from ..contracts import BackendState, ChunkResult, Segment, TranscriptionResponse
from ..retry import RetryPolicy
from .base import (
    AudioProcessingFailed,
    ChunkCallback,
    InitializationFailed,
    ModelNotAvailable,
    TranscriptionBackend,
    TranscriptionError,
    TranscriptionFailed,
    validate_language,
)
from .controller import DEFAULT_CONCURRENCY, transcribe_in_batches

logger = logging.getLogger(__name__)

# The local engine reports no native confidence; keep the field populated.
PLACEHOLDER_CONFIDENCE = 0.8


@dataclass
class LocalInference:
    text: str
    language: Optional[str] = None


class LocalEngine(Protocol):
    def transcribe(self, samples: np.ndarray, language: Optional[str]) -> LocalInference: ...


EngineLoader = Callable[[Path, Optional[str], bool], LocalEngine]


def _pick_device(torch_mod: Any, override: Optional[str]) -> str:
    if override:
        return override
    if getattr(torch_mod.cuda, "is_available", lambda: False)():
        return "cuda"
    backends = getattr(torch_mod, "backends", None)
    mps = getattr(backends, "mps", None) if backends else None
    if mps is not None and getattr(mps, "is_available", lambda: False)():
        return "mps"
    return "cpu"


class _HFWhisperEngine:
    def __init__(self, torch_mod: Any, processor: Any, model: Any, device: str, dtype: Any):
        self._torch = torch_mod
        self._processor = processor
        self._model = model
        self._device = device
        self._dtype = dtype

    def transcribe(self, samples: np.ndarray, language: Optional[str]) -> LocalInference:
        inputs = self._processor(samples, sampling_rate=MODEL_SAMPLE_RATE, return_tensors="pt")
        features = inputs.input_features.to(self._device, dtype=self._dtype)
        gen_kwargs: dict[str, Any] = {"task": "transcribe"}
        if language:
            gen_kwargs["language"] = language
        with self._torch.inference_mode():
            ids = self._model.generate(features, **gen_kwargs)
        text = self._processor.batch_decode(ids, skip_special_tokens=True)[0]
        return LocalInference(text=" ".join((text or "").split()).strip(), language=language)


def load_hf_whisper(model_dir: Path, device: Optional[str], fp16: bool) -> LocalEngine:
    try:
        import torch  # type: ignore
        from transformers import AutoModelForSpeechSeq2Seq, AutoProcessor  # type: ignore
    except Exception as e:
        raise InitializationFailed(
            f"Local transcription requires torch+transformers installed (pip install 'memoscribe[local]'): {e}",
            "local",
        )

    picked = _pick_device(torch, device)
    dtype = torch.float16 if fp16 and picked in {"cuda", "mps"} else torch.float32
    processor = AutoProcessor.from_pretrained(str(model_dir), local_files_only=True)
    model = AutoModelForSpeechSeq2Seq.from_pretrained(
        str(model_dir), local_files_only=True, torch_dtype=dtype
    ).to(picked)
    model.eval()
    return _HFWhisperEngine(torch, processor, model, picked, dtype)


class OnDeviceTranscriptionBackend(TranscriptionBackend):
    def __init__(
        self,
        model_root: Path | str,
        model_id: str,
        *,
        device: Optional[str] = None,
        fp16: bool = False,
        loader: Optional[EngineLoader] = None,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        release_after_transcription: bool = False,
    ):
        self._model_root = Path(model_root).expanduser()
        self._model_id = model_id
        self._device = device or None
        self._fp16 = bool(fp16)
        self._loader: EngineLoader = loader or load_hf_whisper
        self._retry = retry_policy or RetryPolicy()
        self._concurrency = max(1, int(concurrency))
        self._release_after = bool(release_after_transcription)
        self._engine: Optional[LocalEngine] = None
        self._state: BackendState = "uninitialized"
        self._lock = threading.Lock()
        self.resolved_model_id: Optional[str] = None
        self.model_folder: Optional[Path] = None

    def name(self) -> str:
        return "local"

    @property
    def state(self) -> BackendState:
        return self._state

    @property
    def sample_rate(self) -> int:
        return MODEL_SAMPLE_RATE

    def _ensure_loaded(self) -> LocalEngine:
        engine = self._engine
        if engine is not None:
            return engine
        with self._lock:
            if self._engine is not None:
                return self._engine
            self._state = "initializing"
            try:
                self._engine = self._load()
            except BaseException:
                self._state = "uninitialized"
                raise
            self._state = "ready"
            return self._engine

    def _load(self) -> LocalEngine:
        folder, resolved_id = resolve_model_folder(self._model_root, self._model_id)
        if folder is None:
            _, reason = model_assets_available(self._model_root / self._model_id)
            raise ModelNotAvailable(
                f"No installed local model found for {self._model_id!r} under {self._model_root} ({reason}). "
                "Download a model first; inference never downloads implicitly.",
                self.name(),
            )
        if resolved_id != self._model_id:
            logger.warning(
                "selected local model %r not installed, falling back to installed model %r",
                self._model_id,
                resolved_id,
            )

        logger.info("loading local model %s from %s", resolved_id, folder)
        try:
            engine = self._loader(folder, self._device, self._fp16)
        except TranscriptionError:
            raise
        except Exception as e:
            raise InitializationFailed(f"Failed to initialize local model {resolved_id}: {e}", self.name())
        self.resolved_model_id = resolved_id
        self.model_folder = folder
        logger.info("local model ready model=%s", resolved_id)
        return engine

    async def ensure_ready(self) -> None:
        await asyncio.to_thread(self._ensure_loaded)

    def unload(self) -> None:
        with self._lock:
            if self._engine is not None:
                logger.info("unloading local model %s", self.resolved_model_id)
            self._engine = None
            self._state = "uninitialized"

    def _infer(self, samples: np.ndarray, sample_rate: int, language: Optional[str]) -> TranscriptionResponse:
        engine = self._ensure_loaded()
        audio = np.asarray(samples, dtype=np.float32)
        if sample_rate != MODEL_SAMPLE_RATE:
            try:
                audio = resample_linear(audio, sample_rate, MODEL_SAMPLE_RATE)
            except ValueError as e:
                raise AudioProcessingFailed(str(e), self.name())
        duration = float(audio.size) / float(MODEL_SAMPLE_RATE)
        if audio.size == 0:
            return TranscriptionResponse(text="", confidence=PLACEHOLDER_CONFIDENCE, duration=0.0)

        try:
            result = engine.transcribe(audio, language)
        except Exception as e:
            raise TranscriptionFailed(f"Local inference failed: {e}", self.name(), cause=e)
        return TranscriptionResponse(
            text=(result.text or "").strip(),
            detected_language=result.language,
            confidence=PLACEHOLDER_CONFIDENCE,
            avg_logprob=None,
            duration=duration,
        )

    async def transcribe(
        self,
        samples: np.ndarray,
        sample_rate: int = MODEL_SAMPLE_RATE,
        language: Optional[str] = None,
    ) -> TranscriptionResponse:
        validate_language(language, self.name())
        return await asyncio.to_thread(self._infer, samples, int(sample_rate), language)

    async def _load_recording(self, audio_path: Path | str) -> np.ndarray:
        path = Path(audio_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Audio file not found: {path}")
        try:
            return await asyncio.to_thread(load_audio_at_rate, path, MODEL_SAMPLE_RATE)
        except (ValueError, OSError, EOFError) as e:
            raise AudioProcessingFailed(f"Failed to load audio for local transcription: {e}", self.name())

    async def transcribe_file(
        self, audio_path: Path | str, language: Optional[str] = None
    ) -> TranscriptionResponse:
        validate_language(language, self.name())
        await self.ensure_ready()
        try:
            samples = await self._load_recording(audio_path)
            return await self.transcribe(samples, MODEL_SAMPLE_RATE, language)
        finally:
            if self._release_after:
                self.unload()

    async def transcribe_chunks(
        self,
        audio_path: Path | str,
        segments: Sequence[Segment],
        language: Optional[str] = None,
        *,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> list[ChunkResult]:
        validate_language(language, self.name())
        if not segments:
            return []
        await self.ensure_ready()
        try:
            samples = await self._load_recording(audio_path)
            logger.info(
                "local chunk transcription started chunks=%s samples=%s language=%s",
                len(segments),
                int(samples.size),
                language or "auto",
            )

            async def _operation(index: int, segment: Segment) -> TranscriptionResponse:
                chunk = slice_samples(samples, segment.start_time, segment.end_time, MODEL_SAMPLE_RATE)
                response = await self._retry.call(self.transcribe, chunk, MODEL_SAMPLE_RATE, language)
                return response.model_copy(update={"duration": segment.duration})

            return await transcribe_in_batches(
                segments,
                _operation,
                concurrency=self._concurrency,
                provider_name=self.name(),
                on_chunk=on_chunk,
            )
        finally:
            if self._release_after:
                self.unload()
