from __future__ import annotations

from typing import Optional


class PipelineError(RuntimeError):
    status_code = 500

    def __init__(self, code: str, message: str, *, failed_at: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.failed_at = failed_at


class InputValidationError(PipelineError):
    """Raised before any external call when the request shape is invalid."""

    status_code = 400


class UserNotFoundError(PipelineError):
    status_code = 404

    def __init__(self, user_id: str, *, failed_at: Optional[str] = None):
        super().__init__("user_not_found", f"User not found: {user_id}", failed_at=failed_at)
        self.user_id = user_id


class TranscriptionFailure(PipelineError):
    def __init__(self, message: str, provider_name: str, *, failed_at: Optional[str] = None):
        super().__init__("transcription_failed", message, failed_at=failed_at)
        self.provider_name = provider_name


class ArchivalFailure(PipelineError):
    def __init__(self, message: str, *, key: str = "", failed_at: Optional[str] = None):
        super().__init__("archival_failed", message, failed_at=failed_at)
        self.key = key


class CompletionFailure(PipelineError):
    def __init__(self, message: str, provider_name: str, *, failed_at: Optional[str] = None):
        super().__init__("completion_failed", message, failed_at=failed_at)
        self.provider_name = provider_name


class PersistenceFailure(PipelineError):
    """Raised by the gateway. An audio object archived earlier in the request stays orphaned."""

    def __init__(self, message: str, *, failed_at: Optional[str] = None):
        super().__init__("persistence_failed", message, failed_at=failed_at)
