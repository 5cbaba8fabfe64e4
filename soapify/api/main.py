from __future__ import annotations

"""
HTTP surface for SOAPify clinical note generation.

Design intent:
- Keep route handlers thin: validate, stage, hand off to the NotePipeline.
- Every failure leaves as {error, message}; stack details only outside production.
- Service clients live on app.state so tests can swap in doubles.
"""

import asyncio
import logging
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from soapify.api.deps import ServiceRegistry, build_services
from soapify.api.ingress import stage_audio_upload, validate_audio_submission, validate_text_submission
from soapify.internal_core.config import ServiceConfig, load_config
from soapify.internal_core.contracts import Note, User
from soapify.internal_core.errors import InputValidationError, PersistenceFailure, PipelineError
from soapify.internal_core.logging_setup import configure_logging
from soapify.pipeline.orchestrator import PipelineOutcome

load_dotenv()
_CONFIG = load_config()

SERVICE_NAME = "SOAPify API"
SERVICE_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TextNoteRequest(_RequestModel):
    user_id: Optional[str] = None
    text: Optional[str] = None
    title: Optional[str] = None


class UserCreateRequest(_RequestModel):
    email: Optional[str] = None
    name: Optional[str] = None


class AudioProcessingInfo(BaseModel):
    transcription_length: int
    audio_url: str


class TextProcessingInfo(BaseModel):
    transcription_length: int


class AudioNoteResponse(BaseModel):
    success: bool = True
    note: Note
    processing: AudioProcessingInfo


class TextNoteResponse(BaseModel):
    success: bool = True
    note: Note
    processing: TextProcessingInfo


def _get_config() -> ServiceConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, ServiceConfig):
        return existing
    return _CONFIG


def _get_services() -> ServiceRegistry:
    existing = getattr(app.state, "services", None)
    if isinstance(existing, ServiceRegistry):
        return existing
    raise RuntimeError("Service registry is not initialised; the app must be started through its lifespan.")


@asynccontextmanager
async def _lifespan(app_: FastAPI) -> AsyncIterator[None]:
    cfg = _get_config()
    configure_logging(cfg.SOAPIFY_LOG_LEVEL)
    logger.info("%s %s starting env=%s", SERVICE_NAME, SERVICE_VERSION, cfg.SOAPIFY_ENV)
    # A registry already on app.state is used as-is and not closed on shutdown.
    if not isinstance(getattr(app_.state, "services", None), ServiceRegistry):
        setattr(app_.state, "services", await asyncio.to_thread(build_services, cfg))
        setattr(app_.state, "services_owned", True)
    yield
    services = getattr(app_.state, "services", None)
    if getattr(app_.state, "services_owned", False) and isinstance(services, ServiceRegistry):
        services.close()
        setattr(app_.state, "services", None)
        setattr(app_.state, "services_owned", False)


app = FastAPI(title="soapify note service", version=SERVICE_VERSION, lifespan=_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_CONFIG.SOAPIFY_CORS_ORIGIN],
    allow_credentials=_CONFIG.SOAPIFY_CORS_ORIGIN != "*",
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next: Any) -> Any:
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s status=%d elapsed_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000.0,
    )
    return response


def _error_body(code: str, message: str, exc: Optional[BaseException] = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"error": code, "message": message}
    if exc is not None and not _get_config().is_production:
        details: dict[str, Any] = {
            "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        }
        details.update(extra)
        body["details"] = details
    return body


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request failed path=%s code=%s at=%s message=%s", request.url.path, exc.code, exc.failed_at, exc.message)
    else:
        logger.warning("request rejected path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    extra = {"failed_at": exc.failed_at} if exc.failed_at else {}
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message, exc, **extra))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    logger.warning("request rejected path=%s code=invalid_request message=%s", request.url.path, problems)
    return JSONResponse(status_code=400, content={"error": "invalid_request", "message": problems or "Invalid request"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = "not_found" if exc.status_code == 404 else "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": code, "message": str(exc.detail), "path": request.url.path},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error path=%s", request.url.path)
    return JSONResponse(status_code=500, content=_error_body("internal_error", "Internal server error", exc))


@app.get("/health")
async def health() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


@app.get("/api/status")
async def service_status() -> JSONResponse:
    services = _get_services()
    cfg = services.config
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        await services.gateway.ping()
    except PersistenceFailure as exc:
        logger.error("status check failed: %s", exc.message)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": "Service check failed", "timestamp": timestamp},
        )
    return JSONResponse(
        content={
            "status": "healthy",
            "services": {
                "database": "connected",
                "openai": "configured" if cfg.openai_configured else "not configured",
                "storage": "configured" if cfg.SOAPIFY_AUDIO_BUCKET.strip() else "not configured",
            },
            "timestamp": timestamp,
        }
    )


@app.post("/api/users", response_model=User)
async def create_or_get_user(payload: UserCreateRequest) -> User:
    email = str(payload.email or "").strip()
    if not email:
        raise InputValidationError("missing_email", "Email is required")

    gateway = _get_services().gateway
    existing = await gateway.find_user_by_email(email)
    if existing is not None:
        logger.info("returning existing user id=%s", existing.id)
        return existing
    created = await gateway.create_user(email, payload.name)
    logger.info("created user id=%s", created.id)
    return created


@app.post("/api/notes/upload", response_model=AudioNoteResponse)
async def create_note_from_audio(
    audio: UploadFile | None = File(None),
    user_id: str | None = Form(None, alias="userId"),
    title: str | None = Form(None),
) -> AudioNoteResponse:
    submission = await validate_audio_submission(
        audio,
        user_id,
        title,
        max_bytes=_get_config().SOAPIFY_MAX_UPLOAD_BYTES,
    )
    services = _get_services()
    staged = await stage_audio_upload(submission, services.upload_dir)
    with staged:
        outcome = await services.pipeline.process_audio(staged, user_id=submission.user_id, title=submission.title)

    response = AudioNoteResponse(
        note=outcome.note,
        processing=AudioProcessingInfo(
            transcription_length=outcome.transcription_length,
            audio_url=outcome.audio_url or "",
        ),
    )
    _log_responded(outcome)
    return response


@app.post("/api/notes/text", response_model=TextNoteResponse)
async def create_note_from_text(payload: TextNoteRequest) -> TextNoteResponse:
    submission = validate_text_submission(payload.user_id, payload.text, payload.title)
    outcome = await _get_services().pipeline.process_text(
        user_id=submission.user_id,
        text=submission.text,
        title=submission.title,
    )
    response = TextNoteResponse(
        note=outcome.note,
        processing=TextProcessingInfo(transcription_length=outcome.transcription_length),
    )
    _log_responded(outcome)
    return response


def _log_responded(outcome: PipelineOutcome) -> PipelineOutcome:
    final = outcome.advanced("responded")
    logger.info("note responded note_id=%s states=%s", final.note.id, ",".join(final.states))
    return final


def run() -> None:
    uvicorn.run(
        "soapify.api.main:app",
        host=_CONFIG.SOAPIFY_HOST,
        port=_CONFIG.SOAPIFY_PORT,
        log_level=_CONFIG.SOAPIFY_LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
