import asyncio

import pytest

from soapify.api.ingress import AudioSubmission, stage_audio_upload
from soapify.asr.mock import MockTranscriptionProvider
from soapify.internal_core.errors import (
    ArchivalFailure,
    CompletionFailure,
    PersistenceFailure,
    TranscriptionFailure,
    UserNotFoundError,
)
from soapify.note.structuring import MockCompletionProvider
from soapify.pipeline.orchestrator import NotePipeline, PipelineSettings
from soapify.storage.gateway import InMemoryGateway
from soapify.storage.object_store import InMemoryObjectStore

_SOAP_JSON = (
    '{"title": "Chest pain", "subjective": "Chest pain since morning", '
    '"objective": "HR 92", "assessment": "Atypical chest pain", "plan": "ECG, troponin"}'
)


def _pipeline(
    gateway: InMemoryGateway,
    *,
    transcriber=None,
    store=None,
    completion=None,
) -> NotePipeline:
    return NotePipeline(
        transcriber=transcriber or MockTranscriptionProvider("Patient reports chest pain since this morning."),
        object_store=store or InMemoryObjectStore(),
        completion=completion or MockCompletionProvider([_SOAP_JSON]),
        gateway=gateway,
        settings=PipelineSettings(audio_bucket="audio-files"),
    )


def _staged(tmp_path, payload: bytes = b"\x00\x01\x02"):
    submission = AudioSubmission(
        user_id="ignored",
        title=None,
        original_filename="visit.webm",
        content_type="audio/webm",
        payload=payload,
    )
    return asyncio.run(stage_audio_upload(submission, tmp_path))


def _user(gateway: InMemoryGateway) -> str:
    return asyncio.run(gateway.create_user("dr@example.org")).id


def test_process_audio_persists_one_note_and_removes_transient_file(tmp_path) -> None:
    gateway = InMemoryGateway()
    store = InMemoryObjectStore()
    user_id = _user(gateway)
    upload = _staged(tmp_path)

    outcome = asyncio.run(_pipeline(gateway, store=store).process_audio(upload, user_id=user_id))

    assert len(gateway.notes) == 1
    note = outcome.note
    assert note.raw_input == "Patient reports chest pain since this morning."
    assert note.audio_url and note.audio_url == outcome.audio_url
    assert note.title == "Chest pain"
    assert note.plan == "ECG, troponin"
    assert outcome.transcription_length == len(note.raw_input)
    assert outcome.states == ("validated", "transcribed", "archived", "structured", "persisted")
    assert not upload.path.exists()

    keys = store.keys("audio-files")
    assert len(keys) == 1 and keys[0].startswith(f"{user_id}/")
    assert store.get("audio-files", keys[0]) == (b"\x00\x01\x02", "audio/webm")


def test_process_audio_unknown_user_makes_no_external_calls(tmp_path) -> None:
    gateway = InMemoryGateway()
    transcriber = MockTranscriptionProvider()
    completion = MockCompletionProvider()
    upload = _staged(tmp_path)

    with pytest.raises(UserNotFoundError) as excinfo:
        asyncio.run(
            _pipeline(gateway, transcriber=transcriber, completion=completion).process_audio(
                upload, user_id="does-not-exist"
            )
        )

    assert excinfo.value.status_code == 404
    assert excinfo.value.failed_at == "validated"
    assert transcriber.calls == []
    assert completion.calls == []
    assert gateway.notes == []
    assert not upload.path.exists()


@pytest.mark.parametrize(
    ("overrides", "error_type", "failed_at"),
    [
        ({"transcriber": MockTranscriptionProvider(fail_with="stt down")}, TranscriptionFailure, "validated"),
        ({"store": InMemoryObjectStore(fail_with="bucket missing")}, ArchivalFailure, "transcribed"),
        ({"completion": MockCompletionProvider(fail_with="rate limited")}, CompletionFailure, "archived"),
    ],
)
def test_process_audio_adapter_failure_short_circuits(tmp_path, overrides, error_type, failed_at) -> None:
    gateway = InMemoryGateway()
    user_id = _user(gateway)
    upload = _staged(tmp_path)

    with pytest.raises(error_type) as excinfo:
        asyncio.run(_pipeline(gateway, **overrides).process_audio(upload, user_id=user_id))

    assert excinfo.value.failed_at == failed_at
    assert excinfo.value.status_code == 500
    assert gateway.notes == []
    assert not upload.path.exists()


def test_process_audio_persistence_failure_leaves_archived_object(tmp_path, caplog) -> None:
    caplog.set_level("ERROR", logger="soapify.pipeline.orchestrator")
    gateway = InMemoryGateway(fail_note_writes_with="database unavailable")
    store = InMemoryObjectStore()
    user_id = _user(gateway)
    upload = _staged(tmp_path)

    with pytest.raises(PersistenceFailure) as excinfo:
        asyncio.run(_pipeline(gateway, store=store).process_audio(upload, user_id=user_id))

    assert excinfo.value.failed_at == "structured"
    assert len(store.keys("audio-files")) == 1
    assert any("orphaned" in rec.getMessage() for rec in caplog.records)
    assert not upload.path.exists()


def test_process_audio_unparseable_output_keeps_transcript(tmp_path) -> None:
    gateway = InMemoryGateway()
    user_id = _user(gateway)
    pipeline = _pipeline(gateway, completion=MockCompletionProvider(["Sorry, I cannot help."]))

    outcome = asyncio.run(pipeline.process_audio(_staged(tmp_path), user_id=user_id, title="Morning visit"))

    assert outcome.note.title == "Morning visit"
    assert outcome.note.subjective == "Patient reports chest pain since this morning."
    assert (outcome.note.objective, outcome.note.assessment, outcome.note.plan) == ("", "", "")


def test_process_audio_same_bytes_twice_creates_two_notes_and_objects(tmp_path) -> None:
    gateway = InMemoryGateway()
    store = InMemoryObjectStore()
    user_id = _user(gateway)
    pipeline = _pipeline(gateway, store=store)

    first = asyncio.run(pipeline.process_audio(_staged(tmp_path), user_id=user_id))
    second = asyncio.run(pipeline.process_audio(_staged(tmp_path), user_id=user_id))

    assert first.note.id != second.note.id
    assert first.audio_url != second.audio_url
    assert len(store.keys("audio-files")) == 2


def test_process_text_skips_transcription_and_archival() -> None:
    gateway = InMemoryGateway()
    transcriber = MockTranscriptionProvider()
    store = InMemoryObjectStore()
    completion = MockCompletionProvider([_SOAP_JSON])
    user_id = _user(gateway)
    text = "  58yo with chest pain.\nHR 92.  "

    outcome = asyncio.run(
        _pipeline(gateway, transcriber=transcriber, store=store, completion=completion).process_text(
            user_id=user_id, text=text
        )
    )

    assert outcome.note.raw_input == text
    assert outcome.note.audio_url is None
    assert outcome.audio_url is None
    assert outcome.transcription_length == len(text)
    assert outcome.states == ("validated", "structured", "persisted")
    assert transcriber.calls == []
    assert store.keys("audio-files") == []
    assert completion.calls[0]["user_text"].startswith("Clinical note:\n\n")


def test_outcome_advanced_appends_state_without_mutating() -> None:
    gateway = InMemoryGateway()
    user_id = _user(gateway)
    outcome = asyncio.run(_pipeline(gateway).process_text(user_id=user_id, text="BP 120/80"))

    final = outcome.advanced("responded")

    assert final.states == ("validated", "structured", "persisted", "responded")
    assert outcome.states == ("validated", "structured", "persisted")
    assert final.note == outcome.note
