from __future__ import annotations

"""
Speech-to-text adapters for the note pipeline.

Design intent:
- Keep one async provider contract so hosted and mock backends swap freely.
- Report provider failures as TranscriptionFailure, never partial text.
"""

from .base import TranscriptionProvider
from .mock import MockTranscriptionProvider
from .openai_whisper import OpenAITranscriptionProvider

__all__ = [
    "TranscriptionProvider",
    "MockTranscriptionProvider",
    "OpenAITranscriptionProvider",
]
