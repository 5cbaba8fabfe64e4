from __future__ import annotations

"""
Request-shape validation and transient staging for note submissions.

Design intent:
- Reject bad requests before any external service is touched.
- Read uploads only up to the size ceiling so oversized payloads cost nothing.
- Hand the pipeline a uniquely named transient file whose removal happens
  exactly once, whichever way the request ends.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from soapify.internal_core.errors import InputValidationError

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 1024 * 1024


@dataclass(frozen=True)
class TextSubmission:
    user_id: str
    text: str
    title: Optional[str]


@dataclass(frozen=True)
class AudioSubmission:
    user_id: str
    title: Optional[str]
    original_filename: str
    content_type: str
    payload: bytes


def _clean_optional(value: Optional[str]) -> Optional[str]:
    cleaned = str(value or "").strip()
    return cleaned or None


def normalize_media_type(content_type: Optional[str]) -> str:
    return str(content_type or "").split(";", 1)[0].strip().lower()


def validate_text_submission(user_id: Optional[str], text: Optional[str], title: Optional[str]) -> TextSubmission:
    if not str(user_id or "").strip():
        raise InputValidationError("missing_user_id", "User ID is required")
    if not str(text or "").strip():
        raise InputValidationError("missing_text", "Text content is required")
    # The submitted text is kept verbatim; only blank checks strip.
    return TextSubmission(user_id=str(user_id).strip(), text=str(text), title=_clean_optional(title))


async def read_upload_within_limit(upload: Any, max_bytes: int) -> bytes:
    buffer = bytearray()
    while True:
        chunk = await upload.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > max_bytes:
            raise InputValidationError(
                "oversized_payload",
                f"Audio file exceeds the {max_bytes // (1024 * 1024)}MB limit",
            )
    return bytes(buffer)


async def validate_audio_submission(
    upload: Any,
    user_id: Optional[str],
    title: Optional[str],
    *,
    max_bytes: int,
) -> AudioSubmission:
    if upload is None or not str(getattr(upload, "filename", "") or "").strip():
        raise InputValidationError("missing_audio", "No audio file provided")
    if not str(user_id or "").strip():
        raise InputValidationError("missing_user_id", "User ID is required")

    media_type = normalize_media_type(getattr(upload, "content_type", None))
    if not media_type.startswith("audio/"):
        raise InputValidationError(
            "unsupported_media_type",
            f"Invalid file type '{media_type or 'unknown'}'. Only audio files are allowed.",
        )

    payload = await read_upload_within_limit(upload, max_bytes)
    if not payload:
        raise InputValidationError("empty_payload", "Uploaded audio file is empty")

    return AudioSubmission(
        user_id=str(user_id).strip(),
        title=_clean_optional(title),
        original_filename=str(upload.filename),
        content_type=media_type,
        payload=payload,
    )


def _safe_suffix(filename: str) -> str:
    suffix = Path(str(filename or "").replace("\\", "/")).suffix.lower()
    safe = "".join(ch for ch in suffix[1:] if ch.isalnum())[:10]
    return f".{safe}" if safe else ""


class TransientAudioFile:
    """Local copy of an upload; `discard()` deletes it at most once."""

    def __init__(self, path: Path, *, original_filename: str, content_type: str, size_bytes: int) -> None:
        self.path = path
        self.original_filename = original_filename
        self.content_type = content_type
        self.size_bytes = size_bytes
        self._discarded = False

    @property
    def discarded(self) -> bool:
        return self._discarded

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def discard(self) -> bool:
        if self._discarded:
            return False
        self._discarded = True
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("failed to remove transient upload path=%s error=%s", self.path, exc)
            return False
        logger.info("transient upload removed path=%s", self.path.name)
        return True

    def __enter__(self) -> "TransientAudioFile":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.discard()


def _write_exclusive(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = path.open("xb")
    try:
        with handle:
            handle.write(payload)
    except BaseException:
        # Created by the open above; a failed write or flush must not leave it behind.
        path.unlink(missing_ok=True)
        raise


async def stage_audio_upload(submission: AudioSubmission, upload_dir: Path) -> TransientAudioFile:
    name = f"audio-{int(time.time() * 1000)}-{uuid4().hex[:10]}{_safe_suffix(submission.original_filename)}"
    path = Path(upload_dir) / name
    await asyncio.to_thread(_write_exclusive, path, submission.payload)
    logger.info("upload staged path=%s bytes=%d", name, len(submission.payload))
    return TransientAudioFile(
        path,
        original_filename=submission.original_filename,
        content_type=submission.content_type,
        size_bytes=len(submission.payload),
    )
