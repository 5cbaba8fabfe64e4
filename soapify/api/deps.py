from __future__ import annotations

"""
Process-wide service wiring for the HTTP surface.

Design intent:
- Build every external client once per process from ServiceConfig.
- Keep the pipeline unaware of which backend sits behind each adapter.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from openai import AsyncOpenAI

from soapify.asr.base import TranscriptionProvider
from soapify.asr.openai_whisper import OpenAITranscriptionProvider
from soapify.internal_core.config import ServiceConfig
from soapify.note.structuring import CompletionProvider, OpenAIChatCompletionProvider
from soapify.pipeline.orchestrator import NotePipeline, PipelineSettings
from soapify.storage.gateway import PersistenceGateway, SQLAlchemyGateway
from soapify.storage.object_store import ObjectStore, S3ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceRegistry:
    config: ServiceConfig
    gateway: PersistenceGateway
    transcriber: TranscriptionProvider
    object_store: ObjectStore
    completion: CompletionProvider
    upload_dir: Path
    pipeline: NotePipeline

    def close(self) -> None:
        dispose = getattr(self.gateway, "dispose", None)
        if callable(dispose):
            dispose()


def pipeline_settings_from_config(cfg: ServiceConfig) -> PipelineSettings:
    return PipelineSettings(
        audio_bucket=cfg.SOAPIFY_AUDIO_BUCKET,
        transcribe_language=cfg.SOAPIFY_TRANSCRIBE_LANGUAGE,
        completion_temperature=cfg.SOAPIFY_COMPLETION_TEMPERATURE,
        completion_max_tokens=cfg.SOAPIFY_COMPLETION_MAX_TOKENS,
    )


def assemble_services(
    cfg: ServiceConfig,
    *,
    gateway: PersistenceGateway,
    transcriber: TranscriptionProvider,
    object_store: ObjectStore,
    completion: CompletionProvider,
    upload_dir: Optional[Path] = None,
) -> ServiceRegistry:
    pipeline = NotePipeline(
        transcriber=transcriber,
        object_store=object_store,
        completion=completion,
        gateway=gateway,
        settings=pipeline_settings_from_config(cfg),
    )
    return ServiceRegistry(
        config=cfg,
        gateway=gateway,
        transcriber=transcriber,
        object_store=object_store,
        completion=completion,
        upload_dir=upload_dir or cfg.upload_dir_path(),
        pipeline=pipeline,
    )


def _build_openai_client(cfg: ServiceConfig) -> Optional[AsyncOpenAI]:
    if not cfg.openai_configured:
        logger.warning("OPENAI_API_KEY is not set; transcription and structuring requests will fail")
        return None
    return AsyncOpenAI(
        api_key=cfg.OPENAI_API_KEY,
        timeout=cfg.SOAPIFY_OPENAI_TIMEOUT_SEC,
        max_retries=0,
    )


def build_services(cfg: ServiceConfig) -> ServiceRegistry:
    openai_client = _build_openai_client(cfg)
    s3_client = boto3.client(
        "s3",
        endpoint_url=cfg.SOAPIFY_S3_ENDPOINT_URL,
        region_name=cfg.SOAPIFY_S3_REGION,
    )

    gateway = SQLAlchemyGateway.from_url(cfg.DATABASE_URL)
    gateway.create_schema()

    logger.info(
        "services built env=%s transcribe_model=%s completion_model=%s bucket=%s",
        cfg.SOAPIFY_ENV,
        cfg.SOAPIFY_TRANSCRIBE_MODEL,
        cfg.SOAPIFY_COMPLETION_MODEL,
        cfg.SOAPIFY_AUDIO_BUCKET,
    )
    return assemble_services(
        cfg,
        gateway=gateway,
        transcriber=OpenAITranscriptionProvider(openai_client, model=cfg.SOAPIFY_TRANSCRIBE_MODEL),
        object_store=S3ObjectStore(
            s3_client,
            region=cfg.SOAPIFY_S3_REGION,
            public_base_url=cfg.SOAPIFY_S3_PUBLIC_BASE_URL,
        ),
        completion=OpenAIChatCompletionProvider(openai_client, model=cfg.SOAPIFY_COMPLETION_MODEL),
    )
