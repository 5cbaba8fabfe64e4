from __future__ import annotations

"""
Persistence gateway for users and notes.

Design intent:
- Expose only the lookups and the single atomic note insert the pipeline needs.
- Keep SQLAlchemy sessions short-lived and off the event loop.
- Translate driver errors into PersistenceFailure at this boundary.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import RLock
from typing import Dict, List, Optional

from sqlalchemy import create_engine, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from soapify.internal_core.contracts import Note, NoteCreate, User, UserSummary
from soapify.internal_core.errors import PersistenceFailure

from .models import Base, NoteRow, UserRow

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PersistenceGateway(ABC):
    @abstractmethod
    async def find_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    async def create_user(self, email: str, name: Optional[str] = None) -> User: ...

    @abstractmethod
    async def create_note(self, fields: NoteCreate) -> Note: ...

    @abstractmethod
    async def ping(self) -> None: ...


class SQLAlchemyGateway(PersistenceGateway):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str) -> "SQLAlchemyGateway":
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
        return cls(engine)

    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    @staticmethod
    def _to_user(row: UserRow) -> User:
        return User(id=row.id, email=row.email, name=row.name, created_at=_as_utc(row.created_at))

    @staticmethod
    def _to_note(row: NoteRow, user: UserRow) -> Note:
        return Note(
            id=row.id,
            title=row.title,
            subjective=row.subjective,
            objective=row.objective,
            assessment=row.assessment,
            plan=row.plan,
            raw_input=row.raw_input,
            audio_url=row.audio_url,
            created_at=_as_utc(row.created_at),
            user_id=row.user_id,
            user=UserSummary(id=user.id, email=user.email, name=user.name),
        )

    def _find_user_sync(self, user_id: str) -> Optional[User]:
        with self._sessions() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row is not None else None

    def _find_user_by_email_sync(self, email: str) -> Optional[User]:
        with self._sessions() as session:
            row = session.scalars(select(UserRow).where(UserRow.email == email)).first()
            return self._to_user(row) if row is not None else None

    def _create_user_sync(self, email: str, name: Optional[str]) -> User:
        with self._sessions() as session:
            row = UserRow(email=email, name=name or None)
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # Concurrent create for the same email; return the winner.
                session.rollback()
                existing = session.scalars(select(UserRow).where(UserRow.email == email)).first()
                if existing is None:
                    raise
                return self._to_user(existing)
            return self._to_user(row)

    def _create_note_sync(self, fields: NoteCreate) -> Note:
        with self._sessions() as session:
            user = session.get(UserRow, fields.user_id)
            if user is None:
                raise PersistenceFailure(f"Cannot create note for unknown user: {fields.user_id}")
            row = NoteRow(
                title=fields.title,
                subjective=fields.subjective,
                objective=fields.objective,
                assessment=fields.assessment,
                plan=fields.plan,
                raw_input=fields.raw_input,
                audio_url=fields.audio_url,
                user_id=fields.user_id,
            )
            session.add(row)
            session.commit()
            logger.debug("note row inserted id=%s user_id=%s", row.id, row.user_id)
            return self._to_note(row, user)

    def _ping_sync(self) -> None:
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    async def find_user(self, user_id: str) -> Optional[User]:
        try:
            return await asyncio.to_thread(self._find_user_sync, user_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"User lookup failed: {exc}") from exc

    async def find_user_by_email(self, email: str) -> Optional[User]:
        try:
            return await asyncio.to_thread(self._find_user_by_email_sync, email)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"User lookup failed: {exc}") from exc

    async def create_user(self, email: str, name: Optional[str] = None) -> User:
        try:
            return await asyncio.to_thread(self._create_user_sync, email, name)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"User creation failed: {exc}") from exc

    async def create_note(self, fields: NoteCreate) -> Note:
        try:
            return await asyncio.to_thread(self._create_note_sync, fields)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to save note: {exc}") from exc

    async def ping(self) -> None:
        try:
            await asyncio.to_thread(self._ping_sync)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Database check failed: {exc}") from exc


class InMemoryGateway(PersistenceGateway):
    def __init__(self, *, fail_note_writes_with: Optional[str] = None) -> None:
        self._lock = RLock()
        self._users: Dict[str, User] = {}
        self._notes: List[Note] = []
        self._fail_note_writes_with = fail_note_writes_with

    async def find_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    async def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return user
        return None

    async def create_user(self, email: str, name: Optional[str] = None) -> User:
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return user
            user = User(
                id=str(uuid.uuid4()),
                email=email,
                name=name or None,
                created_at=datetime.now(timezone.utc),
            )
            self._users[user.id] = user
            return user

    async def create_note(self, fields: NoteCreate) -> Note:
        if self._fail_note_writes_with is not None:
            raise PersistenceFailure(self._fail_note_writes_with)
        with self._lock:
            user = self._users.get(fields.user_id)
            if user is None:
                raise PersistenceFailure(f"Cannot create note for unknown user: {fields.user_id}")
            note = Note(
                id=str(uuid.uuid4()),
                created_at=datetime.now(timezone.utc),
                user=user.summary(),
                **fields.model_dump(),
            )
            self._notes.append(note)
            return note

    async def ping(self) -> None:
        return None

    @property
    def notes(self) -> List[Note]:
        with self._lock:
            return list(self._notes)
