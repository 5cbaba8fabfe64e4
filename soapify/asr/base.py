from __future__ import annotations

from abc import ABC, abstractmethod


class TranscriptionProvider(ABC):
    @abstractmethod
    async def transcribe(self, audio_path: str, language: str = "en") -> str: ...

    @abstractmethod
    def name(self) -> str: ...
