from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # memoscribe/internal_core/config.py -> memoscribe -> project
    return Path(__file__).resolve().parents[2]


def _model_root_from_env() -> Optional[Path]:
    raw = os.getenv("MEMO_MODEL_ROOT", "").strip()
    if not raw:
        return None
    try:
        return Path(raw).expanduser().resolve()
    except Exception:
        return None


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass(frozen=True)
class MemoConfig:
    MEMO_API_BASE_URL: str
    MEMO_TRANSCRIBE_TIMEOUT_SEC: float
    MEMO_ASR_PRIMARY: str
    MEMO_ASR_FALLBACK: str
    MEMO_PREFERRED_LANGUAGE: str
    MEMO_LANGUAGE_FALLBACK_THRESHOLD: float
    MEMO_MODEL_ROOT: str
    MEMO_LOCAL_MODEL: str
    MEMO_LOCAL_DEVICE: str
    MEMO_LOCAL_FP16: bool
    MEMO_RELEASE_LOCAL_MODEL: bool
    MEMO_CHUNK_CONCURRENCY: int
    MEMO_CHUNK_MAX_ATTEMPTS: int
    MEMO_CHUNK_RETRY_DELAY_SEC: float
    MEMO_CHUNK_FORMAT: str
    MEMO_TMP_DIR: str
    MEMO_LOG_LEVEL: str
    MEMO_VAD_SILENCE_DB: float
    MEMO_VAD_MIN_SPEECH_SEC: float
    MEMO_VAD_MIN_SILENCE_SEC: float
    MEMO_VAD_WINDOW: int

    def tmp_dir_path(self, repo_root: Optional[Path] = None) -> Path:
        root = repo_root if repo_root is not None else _project_root()
        return (root / self.MEMO_TMP_DIR).resolve()

    def model_root_path(self) -> Path:
        return Path(self.MEMO_MODEL_ROOT).expanduser().resolve()

    def preferred_language(self) -> Optional[str]:
        value = self.MEMO_PREFERRED_LANGUAGE.strip().lower()
        return value or None


def load_config() -> MemoConfig:
    project_root = _project_root()
    model_root = _model_root_from_env() or (project_root / "models")

    return MemoConfig(
        MEMO_API_BASE_URL=_getenv_str("MEMO_API_BASE_URL", "https://sonora.fly.dev").rstrip("/"),
        MEMO_TRANSCRIBE_TIMEOUT_SEC=_getenv_float("MEMO_TRANSCRIBE_TIMEOUT_SEC", 120.0),
        MEMO_ASR_PRIMARY=_getenv_str("MEMO_ASR_PRIMARY", "cloud"),
        MEMO_ASR_FALLBACK=_getenv_str("MEMO_ASR_FALLBACK", "none"),
        MEMO_PREFERRED_LANGUAGE=_getenv_str("MEMO_PREFERRED_LANGUAGE", ""),
        MEMO_LANGUAGE_FALLBACK_THRESHOLD=_getenv_float("MEMO_LANGUAGE_FALLBACK_THRESHOLD", 0.7),
        MEMO_MODEL_ROOT=str(model_root),
        MEMO_LOCAL_MODEL=_getenv_str("MEMO_LOCAL_MODEL", "whisper-base"),
        MEMO_LOCAL_DEVICE=_getenv_str("MEMO_LOCAL_DEVICE", ""),
        MEMO_LOCAL_FP16=_getenv_bool("MEMO_LOCAL_FP16", False),
        MEMO_RELEASE_LOCAL_MODEL=_getenv_bool("MEMO_RELEASE_LOCAL_MODEL", False),
        MEMO_CHUNK_CONCURRENCY=max(1, _getenv_int("MEMO_CHUNK_CONCURRENCY", 3)),
        MEMO_CHUNK_MAX_ATTEMPTS=max(1, _getenv_int("MEMO_CHUNK_MAX_ATTEMPTS", 3)),
        MEMO_CHUNK_RETRY_DELAY_SEC=_getenv_float("MEMO_CHUNK_RETRY_DELAY_SEC", 0.5),
        MEMO_CHUNK_FORMAT=_getenv_str("MEMO_CHUNK_FORMAT", "m4a").strip().lower().lstrip("."),
        MEMO_TMP_DIR=_getenv_str("MEMO_TMP_DIR", "./tmp"),
        MEMO_LOG_LEVEL=_getenv_str("MEMO_LOG_LEVEL", "INFO"),
        MEMO_VAD_SILENCE_DB=_getenv_float("MEMO_VAD_SILENCE_DB", -45.0),
        MEMO_VAD_MIN_SPEECH_SEC=_getenv_float("MEMO_VAD_MIN_SPEECH_SEC", 0.5),
        MEMO_VAD_MIN_SILENCE_SEC=_getenv_float("MEMO_VAD_MIN_SILENCE_SEC", 0.3),
        MEMO_VAD_WINDOW=max(256, _getenv_int("MEMO_VAD_WINDOW", 1024)),
    )
