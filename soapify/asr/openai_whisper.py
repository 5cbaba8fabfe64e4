from __future__ import annotations

"""
Hosted speech-to-text through the OpenAI transcription endpoint.

Design intent:
- Stream the staged upload from its file handle instead of buffering it again.
- Surface every transport or service error as one TranscriptionFailure.
- Never retry; the client is built with retries disabled.
"""

import logging
from pathlib import Path
from typing import Any

from soapify.internal_core.errors import TranscriptionFailure

from .base import TranscriptionProvider

logger = logging.getLogger(__name__)


class OpenAITranscriptionProvider(TranscriptionProvider):
    def __init__(self, client: Any, model: str = "whisper-1") -> None:
        self._client = client
        self._model = model

    async def transcribe(self, audio_path: str, language: str = "en") -> str:
        if self._client is None:
            raise TranscriptionFailure("OpenAI API key is not configured.", self.name())
        path = Path(audio_path)
        try:
            with path.open("rb") as handle:
                result = await self._client.audio.transcriptions.create(
                    file=handle,
                    model=self._model,
                    language=language,
                )
        except Exception as exc:
            raise TranscriptionFailure(f"Transcription request failed: {exc}", self.name()) from exc

        text = result if isinstance(result, str) else getattr(result, "text", None)
        if text is None:
            raise TranscriptionFailure("Transcription response contained no text.", self.name())
        text = str(text).strip()
        if not text:
            raise TranscriptionFailure("Transcription produced an empty transcript.", self.name())

        logger.info("transcription complete model=%s chars=%d", self._model, len(text))
        return text

    def name(self) -> str:
        return f"openai:{self._model}"
