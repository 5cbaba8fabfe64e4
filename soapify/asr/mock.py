from __future__ import annotations

from typing import Optional

from soapify.internal_core.errors import TranscriptionFailure

from .base import TranscriptionProvider


class MockTranscriptionProvider(TranscriptionProvider):
    def __init__(self, transcript: Optional[str] = None, *, fail_with: Optional[str] = None) -> None:
        self._transcript = transcript
        self._fail_with = fail_with
        self.calls: list[str] = []

    async def transcribe(self, audio_path: str, language: str = "en") -> str:
        self.calls.append(audio_path)
        if self._fail_with is not None:
            raise TranscriptionFailure(self._fail_with, self.name())
        if self._transcript is not None:
            return self._transcript
        return f"(mock) simulated transcript {len(self.calls)}."

    def name(self) -> str:
        return "mock"
