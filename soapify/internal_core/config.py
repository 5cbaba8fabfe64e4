from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # soapify/internal_core/config.py -> soapify -> project root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_str_fallback(name: str, fallback_name: str, default: str) -> str:
    value = os.getenv(name)
    if value is not None and value != "":
        return value
    return _getenv_str(fallback_name, default)


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_opt_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


@dataclass(frozen=True)
class ServiceConfig:
    SOAPIFY_ENV: str
    SOAPIFY_LOG_LEVEL: str
    SOAPIFY_CORS_ORIGIN: str
    SOAPIFY_UPLOAD_DIR: str
    SOAPIFY_MAX_UPLOAD_BYTES: int
    OPENAI_API_KEY: str
    SOAPIFY_OPENAI_TIMEOUT_SEC: float
    SOAPIFY_TRANSCRIBE_MODEL: str
    SOAPIFY_TRANSCRIBE_LANGUAGE: str
    SOAPIFY_COMPLETION_MODEL: str
    SOAPIFY_COMPLETION_TEMPERATURE: float
    SOAPIFY_COMPLETION_MAX_TOKENS: int
    SOAPIFY_AUDIO_BUCKET: str
    SOAPIFY_S3_ENDPOINT_URL: Optional[str]
    SOAPIFY_S3_REGION: str
    SOAPIFY_S3_PUBLIC_BASE_URL: Optional[str]
    DATABASE_URL: str
    SOAPIFY_HOST: str
    SOAPIFY_PORT: int

    @property
    def is_production(self) -> bool:
        return self.SOAPIFY_ENV.strip().lower() == "production"

    @property
    def openai_configured(self) -> bool:
        return bool(self.OPENAI_API_KEY.strip())

    def upload_dir_path(self, repo_root: Optional[Path] = None) -> Path:
        base = Path(self.SOAPIFY_UPLOAD_DIR).expanduser()
        if base.is_absolute():
            return base.resolve()
        return ((repo_root or _project_root()) / base).resolve()


def load_config() -> ServiceConfig:
    return ServiceConfig(
        SOAPIFY_ENV=_getenv_str_fallback("SOAPIFY_ENV", "NODE_ENV", "development"),
        SOAPIFY_LOG_LEVEL=_getenv_str("SOAPIFY_LOG_LEVEL", "INFO"),
        SOAPIFY_CORS_ORIGIN=_getenv_str_fallback("SOAPIFY_CORS_ORIGIN", "FRONTEND_URL", "*"),
        SOAPIFY_UPLOAD_DIR=_getenv_str("SOAPIFY_UPLOAD_DIR", "uploads"),
        SOAPIFY_MAX_UPLOAD_BYTES=_getenv_int("SOAPIFY_MAX_UPLOAD_BYTES", 25 * 1024 * 1024),
        OPENAI_API_KEY=_getenv_str("OPENAI_API_KEY", ""),
        SOAPIFY_OPENAI_TIMEOUT_SEC=_getenv_float("SOAPIFY_OPENAI_TIMEOUT_SEC", 120.0),
        SOAPIFY_TRANSCRIBE_MODEL=_getenv_str("SOAPIFY_TRANSCRIBE_MODEL", "whisper-1"),
        SOAPIFY_TRANSCRIBE_LANGUAGE=_getenv_str("SOAPIFY_TRANSCRIBE_LANGUAGE", "en"),
        SOAPIFY_COMPLETION_MODEL=_getenv_str("SOAPIFY_COMPLETION_MODEL", "gpt-4o-mini"),
        SOAPIFY_COMPLETION_TEMPERATURE=_getenv_float("SOAPIFY_COMPLETION_TEMPERATURE", 0.3),
        SOAPIFY_COMPLETION_MAX_TOKENS=_getenv_int("SOAPIFY_COMPLETION_MAX_TOKENS", 2000),
        SOAPIFY_AUDIO_BUCKET=_getenv_str("SOAPIFY_AUDIO_BUCKET", "audio-files"),
        SOAPIFY_S3_ENDPOINT_URL=_getenv_opt_str("SOAPIFY_S3_ENDPOINT_URL"),
        SOAPIFY_S3_REGION=_getenv_str("SOAPIFY_S3_REGION", "us-east-1"),
        SOAPIFY_S3_PUBLIC_BASE_URL=_getenv_opt_str("SOAPIFY_S3_PUBLIC_BASE_URL"),
        DATABASE_URL=_getenv_str("DATABASE_URL", "sqlite:///./soapify.db"),
        SOAPIFY_HOST=_getenv_str("SOAPIFY_HOST", "0.0.0.0"),
        SOAPIFY_PORT=_getenv_int("SOAPIFY_PORT", _getenv_int("PORT", 3001)),
    )
