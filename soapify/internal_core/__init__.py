from .config import ServiceConfig, load_config
from .errors import (
    ArchivalFailure,
    CompletionFailure,
    InputValidationError,
    PersistenceFailure,
    PipelineError,
    TranscriptionFailure,
    UserNotFoundError,
)

__all__ = [
    "ServiceConfig",
    "load_config",
    "PipelineError",
    "InputValidationError",
    "UserNotFoundError",
    "TranscriptionFailure",
    "ArchivalFailure",
    "CompletionFailure",
    "PersistenceFailure",
]
