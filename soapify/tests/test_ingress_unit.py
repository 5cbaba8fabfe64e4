import asyncio
import errno
import io
from pathlib import Path

import pytest

from soapify.api.ingress import (
    AudioSubmission,
    normalize_media_type,
    stage_audio_upload,
    validate_audio_submission,
    validate_text_submission,
)
from soapify.internal_core.errors import InputValidationError


class _FakeUpload:
    def __init__(self, filename: str, content_type: str, payload: bytes) -> None:
        self.filename = filename
        self.content_type = content_type
        self._stream = io.BytesIO(payload)
        self.reads = 0

    async def read(self, size: int = -1) -> bytes:
        self.reads += 1
        return self._stream.read(size)


def _validate(upload, user_id="user-1", title=None, max_bytes=1024):
    return asyncio.run(validate_audio_submission(upload, user_id, title, max_bytes=max_bytes))


def test_normalize_media_type_drops_parameters() -> None:
    assert normalize_media_type("Audio/WebM; codecs=opus") == "audio/webm"
    assert normalize_media_type(None) == ""


def test_validate_text_submission_keeps_text_verbatim() -> None:
    submission = validate_text_submission(" user-1 ", "  BP 120/80\n", "  ")
    assert submission.user_id == "user-1"
    assert submission.text == "  BP 120/80\n"
    assert submission.title is None


@pytest.mark.parametrize(
    ("user_id", "text", "code"),
    [
        (None, "text", "missing_user_id"),
        ("user-1", "", "missing_text"),
        ("user-1", "   ", "missing_text"),
    ],
)
def test_validate_text_submission_rejects_missing_fields(user_id, text, code) -> None:
    with pytest.raises(InputValidationError) as excinfo:
        validate_text_submission(user_id, text, None)
    assert excinfo.value.code == code
    assert excinfo.value.status_code == 400


def test_validate_audio_submission_checks_audio_before_user_id() -> None:
    with pytest.raises(InputValidationError) as excinfo:
        _validate(None, user_id=None)
    assert excinfo.value.code == "missing_audio"

    with pytest.raises(InputValidationError) as excinfo:
        _validate(_FakeUpload("a.webm", "audio/webm", b"abc"), user_id="")
    assert excinfo.value.code == "missing_user_id"


def test_validate_audio_submission_rejects_non_audio_without_reading() -> None:
    upload = _FakeUpload("notes.txt", "text/plain", b"hello")
    with pytest.raises(InputValidationError) as excinfo:
        _validate(upload)
    assert excinfo.value.code == "unsupported_media_type"
    assert upload.reads == 0


def test_validate_audio_submission_rejects_oversized_and_empty_payloads() -> None:
    with pytest.raises(InputValidationError) as excinfo:
        _validate(_FakeUpload("a.wav", "audio/wav", b"\x01" * 2048), max_bytes=1024)
    assert excinfo.value.code == "oversized_payload"

    with pytest.raises(InputValidationError) as excinfo:
        _validate(_FakeUpload("a.wav", "audio/wav", b""))
    assert excinfo.value.code == "empty_payload"


def test_validate_audio_submission_accepts_payload_at_limit() -> None:
    submission = _validate(_FakeUpload("visit.m4a", "audio/mp4", b"\x02" * 1024), title=" Visit ", max_bytes=1024)
    assert submission.content_type == "audio/mp4"
    assert submission.title == "Visit"
    assert len(submission.payload) == 1024


def test_stage_audio_upload_writes_unique_files_and_discards_once(tmp_path) -> None:
    submission = AudioSubmission(
        user_id="user-1",
        title=None,
        original_filename="../../visit.WEBM",
        content_type="audio/webm",
        payload=b"\x00\x01",
    )
    first = asyncio.run(stage_audio_upload(submission, tmp_path))
    second = asyncio.run(stage_audio_upload(submission, tmp_path))

    assert first.path != second.path
    assert first.path.parent == tmp_path
    assert first.path.suffix == ".webm"
    assert first.read_bytes() == b"\x00\x01"

    assert first.discard() is True
    assert first.discard() is False
    assert not first.path.exists()

    with second:
        assert second.path.exists()
    assert second.discarded
    assert not second.path.exists()


class _FullDiskHandle:
    def __init__(self, handle) -> None:
        self._handle = handle

    def write(self, data: bytes) -> int:
        raise OSError(errno.ENOSPC, "No space left on device")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self._handle.close()


def test_stage_audio_upload_removes_partial_file_when_write_fails(tmp_path, monkeypatch) -> None:
    original_open = Path.open

    def full_disk_open(self, *args, **kwargs):
        return _FullDiskHandle(original_open(self, *args, **kwargs))

    monkeypatch.setattr(Path, "open", full_disk_open)
    submission = AudioSubmission(
        user_id="user-1",
        title=None,
        original_filename="visit.webm",
        content_type="audio/webm",
        payload=b"\x00" * 32,
    )

    with pytest.raises(OSError) as excinfo:
        asyncio.run(stage_audio_upload(submission, tmp_path))

    assert excinfo.value.errno == errno.ENOSPC
    assert list(tmp_path.iterdir()) == []
