from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ..contracts import AudioAsset, ChunkResult, Segment, TranscriptionResponse
from ..retry import RetryPolicy
from ..audio_utils import mime_type_for
from .base import (
    AudioProcessingFailed,
    ChunkCallback,
    ServerError,
    TranscriptionBackend,
    TranscriptionFailed,
    validate_language,
)
from .controller import DEFAULT_CONCURRENCY, transcribe_in_batches
from .exporter import ChunkExporter

logger = logging.getLogger(__name__)

_LANGUAGE_REJECTION_CODES = {"unsupported_language", "invalid_language", "unknown_language"}


class _StrictPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True)

    text: Optional[str] = None
    detected_language: Optional[str] = None
    confidence: Optional[float] = None
    avg_logprob: Optional[float] = None
    duration: Optional[float] = None


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _opt_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _opt_confidence(value: Any) -> Optional[float]:
    conf = _opt_float(value)
    if conf is None or not 0.0 <= conf <= 1.0:
        return None
    return conf


def parse_transcription_body(body: bytes) -> TranscriptionResponse:
    """Decode a 2xx body: strict schema, then permissive keys, then raw text."""
    try:
        payload = _StrictPayload.model_validate_json(body)
        return TranscriptionResponse(
            text=payload.text or "",
            detected_language=payload.detected_language,
            confidence=payload.confidence,
            avg_logprob=payload.avg_logprob,
            duration=payload.duration,
        )
    except (ValidationError, ValueError) as e:
        logger.debug("strict response decode failed, trying permissive parse: %s", e)

    try:
        obj = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        obj = None
    if isinstance(obj, dict):
        logger.debug("permissive response keys: %s", ", ".join(sorted(str(k) for k in obj)))
        return TranscriptionResponse(
            text=_opt_str(obj.get("text")) or "",
            detected_language=_opt_str(obj.get("detected_language")),
            confidence=_opt_confidence(obj.get("confidence")),
            avg_logprob=_opt_float(obj.get("avg_logprob")),
            duration=_opt_float(obj.get("duration")),
        )

    logger.debug("response is not a JSON object, treating body as transcript text")
    return TranscriptionResponse(text=body.decode("utf-8", "replace"))


def should_retry_without_language(error: ServerError) -> bool:
    """Decide whether a server error means the language hint was rejected.

    An explicit ``code``/``error_code`` in a JSON error body wins; otherwise the
    message text is matched.
    """
    try:
        obj = json.loads(error.body)
    except (ValueError, TypeError):
        obj = None
    if isinstance(obj, dict):
        for key in ("code", "error_code"):
            code = obj.get(key)
            if isinstance(code, str) and code.strip().lower() in _LANGUAGE_REJECTION_CODES:
                return True

    msg = (error.body or "").lower()
    if "language" in msg and any(word in msg for word in ("unknown", "unsupported", "invalid")):
        return True
    if 400 <= error.status < 500:
        return "language" in msg
    return False


class CloudTranscriptionBackend(TranscriptionBackend):
    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = 120.0,
        exporter: Optional[ChunkExporter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout_sec = float(timeout_sec)
        self._exporter = exporter
        self._retry = retry_policy or RetryPolicy()
        self._concurrency = max(1, int(concurrency))
        self._transport = transport

    def name(self) -> str:
        return "cloud"

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/transcribe"

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        async with httpx.AsyncClient(timeout=self._timeout_sec, transport=self._transport) as client:
            yield client

    async def _send(
        self,
        client: httpx.AsyncClient,
        file_path: Path,
        language: Optional[str],
        headers: dict[str, str],
    ) -> TranscriptionResponse:
        try:
            content = await asyncio.to_thread(file_path.read_bytes)
        except OSError as e:
            raise AudioProcessingFailed(f"Cannot read audio chunk {file_path.name}: {e}", self.name())

        data = {"response_format": "verbose_json", "temperature": "0", "translate": "false"}
        if language:
            data["language"] = language
        files = {"file": (file_path.name, content, mime_type_for(file_path))}
        logger.debug(
            "cloud request url=%s file=%s bytes=%s language=%s timeout=%s",
            self.endpoint,
            file_path.name,
            len(content),
            language or "auto",
            self._timeout_sec,
        )
        try:
            resp = await client.post(self.endpoint, data=data, files=files, headers=headers)
        except httpx.HTTPError as e:
            raise TranscriptionFailed(f"Upload failed: {e}", self.name(), cause=e)

        if not 200 <= resp.status_code < 300:
            body = resp.text
            logger.warning("cloud server error status=%s language=%s body=%r", resp.status_code, language or "auto", body[:500])
            raise ServerError(resp.status_code, body, self.name())

        response = parse_transcription_body(resp.content)
        logger.info(
            "cloud transcription completed file=%s language=%s chars=%s",
            file_path.name,
            response.detected_language or "unknown",
            len(response.text),
        )
        return response

    async def _transcribe_with(
        self,
        client: httpx.AsyncClient,
        file_path: Path,
        language: Optional[str],
        headers: dict[str, str],
    ) -> TranscriptionResponse:
        try:
            return await self._send(client, file_path, language, headers)
        except ServerError as e:
            if language and should_retry_without_language(e):
                logger.warning(
                    "server rejected language hint %r, retrying once without it (status=%s)",
                    language,
                    e.status,
                )
                return await self._send(client, file_path, None, headers)
            raise

    async def transcribe(
        self,
        file_path: Path | str,
        language: Optional[str] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> TranscriptionResponse:
        validate_language(language, self.name())
        headers = {"X-Correlation-ID": correlation_id or uuid.uuid4().hex}
        async with self._client() as client:
            return await self._transcribe_with(client, Path(file_path), language, headers)

    async def transcribe_file(
        self, audio_path: Path | str, language: Optional[str] = None
    ) -> TranscriptionResponse:
        return await self.transcribe(audio_path, language)

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
        if self._exporter is None:
            raise TranscriptionFailed("Chunked cloud transcription requires a chunk exporter", self.name())
        try:
            asset = await asyncio.to_thread(AudioAsset.open, audio_path)
        except FileNotFoundError:
            raise
        except (ValueError, OSError) as e:
            raise AudioProcessingFailed(str(e), self.name())

        exporter = self._exporter
        correlation_id = uuid.uuid4().hex
        total = len(segments)
        logger.info(
            "cloud chunk transcription started file=%s chunks=%s language=%s",
            asset.path.name,
            total,
            language or "auto",
        )

        async with self._client() as client:

            async def _operation(index: int, segment: Segment) -> TranscriptionResponse:
                headers = {
                    "X-Correlation-ID": correlation_id,
                    "X-Chunk-Index": str(index),
                    "X-Chunk-Count": str(total),
                }
                async with exporter.exported(asset, segment, index) as chunk_path:
                    return await self._retry.call(self._transcribe_with, client, chunk_path, language, headers)

            return await transcribe_in_batches(
                segments,
                _operation,
                concurrency=self._concurrency,
                provider_name=self.name(),
                on_chunk=on_chunk,
            )
