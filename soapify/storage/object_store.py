from __future__ import annotations

"""
Durable audio archival on an S3-compatible object store.

Design intent:
- Namespace objects per user and uniquify every key so uploads never overwrite.
- Run the blocking boto3 client off the event loop.
- Report store errors as ArchivalFailure; nothing here deletes on later failures.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote
from uuid import uuid4

from botocore.exceptions import BotoCoreError, ClientError

from soapify.internal_core.errors import ArchivalFailure

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    @abstractmethod
    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str: ...

    @abstractmethod
    def public_url(self, bucket: str, key: str) -> str: ...

    @abstractmethod
    async def remove(self, bucket: str, key: str) -> None: ...


class S3ObjectStore(ObjectStore):
    def __init__(
        self,
        client: Any,
        *,
        region: str = "us-east-1",
        public_base_url: Optional[str] = None,
    ) -> None:
        self._client = client
        self._region = region
        self._public_base_url = (public_base_url or "").rstrip("/")

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", "") or "")
            if code == "PreconditionFailed":
                raise ArchivalFailure(f"Audio object already exists: {key}", key=key) from exc
            raise ArchivalFailure(f"Failed to upload audio: {exc}", key=key) from exc
        except BotoCoreError as exc:
            raise ArchivalFailure(f"Failed to upload audio: {exc}", key=key) from exc
        return key

    def public_url(self, bucket: str, key: str) -> str:
        quoted = quote(key, safe="/")
        if self._public_base_url:
            return f"{self._public_base_url}/{bucket}/{quoted}"
        return f"https://{bucket}.s3.{self._region}.amazonaws.com/{quoted}"

    async def remove(self, bucket: str, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise ArchivalFailure(f"Failed to remove audio: {exc}", key=key) from exc


class InMemoryObjectStore(ObjectStore):
    def __init__(self, base_url: str = "memory://objects", *, fail_with: Optional[str] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._fail_with = fail_with
        self._lock = RLock()
        self._objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        if self._fail_with is not None:
            raise ArchivalFailure(self._fail_with, key=key)
        with self._lock:
            if (bucket, key) in self._objects:
                raise ArchivalFailure(f"Audio object already exists: {key}", key=key)
            self._objects[(bucket, key)] = (bytes(data), content_type)
        return key

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self._base_url}/{bucket}/{quote(key, safe='/')}"

    async def remove(self, bucket: str, key: str) -> None:
        with self._lock:
            self._objects.pop((bucket, key), None)

    def get(self, bucket: str, key: str) -> Optional[Tuple[bytes, str]]:
        with self._lock:
            return self._objects.get((bucket, key))

    def keys(self, bucket: str) -> list[str]:
        with self._lock:
            return sorted(k for (b, k) in self._objects if b == bucket)


@dataclass(frozen=True)
class ArchivedAudio:
    bucket: str
    key: str
    url: str


def _base_filename(original_filename: str) -> str:
    name = str(original_filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or "audio"


def build_object_key(
    user_id: str,
    original_filename: str,
    *,
    now_ms: Optional[int] = None,
    token: Optional[str] = None,
) -> str:
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    unique = token or uuid4().hex[:10]
    return f"{user_id}/{stamp}-{unique}_{_base_filename(original_filename)}"


async def archive_audio(
    store: ObjectStore,
    bucket: str,
    audio_bytes: bytes,
    *,
    user_id: str,
    original_filename: str,
    content_type: str,
) -> ArchivedAudio:
    key = build_object_key(user_id, original_filename)
    try:
        await store.put(bucket, key, audio_bytes, content_type)
        url = store.public_url(bucket, key)
    except ArchivalFailure:
        raise
    except Exception as exc:
        raise ArchivalFailure(f"Failed to upload audio: {exc}", key=key) from exc

    logger.info("audio archived bucket=%s key=%s bytes=%d", bucket, key, len(audio_bytes))
    return ArchivedAudio(bucket=bucket, key=key, url=url)
