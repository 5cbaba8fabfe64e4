from .gateway import InMemoryGateway, PersistenceGateway, SQLAlchemyGateway
from .object_store import (
    ArchivedAudio,
    InMemoryObjectStore,
    ObjectStore,
    S3ObjectStore,
    archive_audio,
    build_object_key,
)

__all__ = [
    "PersistenceGateway",
    "SQLAlchemyGateway",
    "InMemoryGateway",
    "ObjectStore",
    "S3ObjectStore",
    "InMemoryObjectStore",
    "ArchivedAudio",
    "archive_audio",
    "build_object_key",
]
