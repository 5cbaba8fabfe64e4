from __future__ import annotations

"""
Sequential note pipeline: transcribe, archive, structure, normalize, persist.

Design intent:
- One external call at a time, each fed by the previous step's output.
- Any adapter failure short-circuits the rest; side effects already committed
  (an archived object) are left in place.
- The transient upload is discarded on every exit path before control returns.
- No retries anywhere in the chain.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from soapify.api.ingress import TransientAudioFile
from soapify.asr.base import TranscriptionProvider
from soapify.internal_core.contracts import Note, NoteCreate, PipelineState, SourceKind, SOAPRecord, User
from soapify.internal_core.errors import (
    ArchivalFailure,
    PersistenceFailure,
    PipelineError,
    TranscriptionFailure,
    UserNotFoundError,
)
from soapify.note.normalizer import normalize_model_output
from soapify.note.structuring import CompletionProvider, structure_clinical_text
from soapify.storage.gateway import PersistenceGateway
from soapify.storage.object_store import ObjectStore, archive_audio

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineSettings:
    audio_bucket: str = "audio-files"
    transcribe_language: str = "en"
    completion_temperature: float = 0.3
    completion_max_tokens: int = 2000


@dataclass(frozen=True)
class PipelineOutcome:
    note: Note
    transcription_length: int
    audio_url: Optional[str] = None
    states: tuple[PipelineState, ...] = field(default_factory=tuple)

    def advanced(self, state: PipelineState) -> "PipelineOutcome":
        return replace(self, states=self.states + (state,))


class _StateTrail:
    def __init__(self) -> None:
        self.states: list[PipelineState] = ["validated"]

    def advance(self, state: PipelineState) -> None:
        self.states.append(state)

    @property
    def current(self) -> PipelineState:
        return self.states[-1]


class NotePipeline:
    def __init__(
        self,
        *,
        transcriber: TranscriptionProvider,
        object_store: ObjectStore,
        completion: CompletionProvider,
        gateway: PersistenceGateway,
        settings: Optional[PipelineSettings] = None,
    ) -> None:
        self._transcriber = transcriber
        self._object_store = object_store
        self._completion = completion
        self._gateway = gateway
        self._settings = settings or PipelineSettings()

    async def process_audio(
        self,
        upload: TransientAudioFile,
        *,
        user_id: str,
        title: Optional[str] = None,
    ) -> PipelineOutcome:
        trail = _StateTrail()
        try:
            await self._require_user(user_id)

            logger.info("step 1 transcribe user_id=%s bytes=%d", user_id, upload.size_bytes)
            transcript = await self._transcribe(upload)
            trail.advance("transcribed")

            logger.info("step 2 archive user_id=%s", user_id)
            try:
                audio_bytes = await asyncio.to_thread(upload.read_bytes)
            except OSError as exc:
                raise ArchivalFailure(f"Could not read staged audio: {exc}") from exc
            archived = await archive_audio(
                self._object_store,
                self._settings.audio_bucket,
                audio_bytes,
                user_id=user_id,
                original_filename=upload.original_filename,
                content_type=upload.content_type,
            )
            trail.advance("archived")

            logger.info("step 3 structure user_id=%s transcript_chars=%d", user_id, len(transcript))
            record = await self._structure(transcript, source_kind="audio", title=title)
            trail.advance("structured")

            logger.info("step 4 persist user_id=%s", user_id)
            note = await self._persist(
                NoteCreate.from_record(record, raw_input=transcript, user_id=user_id, audio_url=archived.url)
            )
            trail.advance("persisted")
        except PipelineError as exc:
            self._mark_failed(exc, trail, user_id=user_id)
            raise
        finally:
            upload.discard()

        logger.info("audio pipeline complete note_id=%s states=%s", note.id, ",".join(trail.states))
        return PipelineOutcome(
            note=note,
            transcription_length=len(transcript),
            audio_url=archived.url,
            states=tuple(trail.states),
        )

    async def process_text(
        self,
        *,
        user_id: str,
        text: str,
        title: Optional[str] = None,
    ) -> PipelineOutcome:
        trail = _StateTrail()
        try:
            await self._require_user(user_id)

            logger.info("structure text user_id=%s chars=%d", user_id, len(text))
            record = await self._structure(text, source_kind="text", title=title)
            trail.advance("structured")

            note = await self._persist(NoteCreate.from_record(record, raw_input=text, user_id=user_id))
            trail.advance("persisted")
        except PipelineError as exc:
            self._mark_failed(exc, trail, user_id=user_id)
            raise

        logger.info("text pipeline complete note_id=%s states=%s", note.id, ",".join(trail.states))
        return PipelineOutcome(note=note, transcription_length=len(text), states=tuple(trail.states))

    async def _require_user(self, user_id: str) -> User:
        try:
            user = await self._gateway.find_user(user_id)
        except PipelineError:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"User lookup failed: {exc}") from exc
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def _transcribe(self, upload: TransientAudioFile) -> str:
        try:
            return await self._transcriber.transcribe(
                str(upload.path),
                language=self._settings.transcribe_language,
            )
        except TranscriptionFailure:
            raise
        except Exception as exc:
            raise TranscriptionFailure(f"Transcription failed: {exc}", self._transcriber.name()) from exc

    async def _structure(self, source_text: str, *, source_kind: SourceKind, title: Optional[str]) -> SOAPRecord:
        raw = await structure_clinical_text(
            self._completion,
            source_text,
            source_kind=source_kind,
            temperature=self._settings.completion_temperature,
            max_output_tokens=self._settings.completion_max_tokens,
        )
        return normalize_model_output(raw, source_text=source_text, caller_title=title)

    async def _persist(self, fields: NoteCreate) -> Note:
        try:
            return await self._gateway.create_note(fields)
        except PipelineError:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"Failed to save note: {exc}") from exc

    @staticmethod
    def _mark_failed(exc: PipelineError, trail: _StateTrail, *, user_id: str) -> None:
        exc.failed_at = trail.current
        if isinstance(exc, PersistenceFailure) and "archived" in trail.states:
            logger.error(
                "note not persisted after audio was archived; object left orphaned user_id=%s",
                user_id,
            )
        logger.error(
            "pipeline failed at=%s code=%s user_id=%s message=%s",
            exc.failed_at,
            exc.code,
            user_id,
            exc.message,
        )
