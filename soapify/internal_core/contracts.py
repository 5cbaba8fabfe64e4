from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

SOAP_SECTIONS = ("subjective", "objective", "assessment", "plan")
DEFAULT_NOTE_TITLE = "Clinical Note"

SourceKind = Literal["audio", "text"]

PipelineState = Literal[
    "validated",
    "transcribed",
    "archived",
    "structured",
    "persisted",
    "responded",
]


class _WireModel(BaseModel):
    # Serialized with the camelCase names clients already consume.
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class UserSummary(_WireModel):
    id: str
    email: str
    name: Optional[str] = None


class User(_WireModel):
    id: str
    email: str
    name: Optional[str] = None
    created_at: datetime

    def summary(self) -> UserSummary:
        return UserSummary(id=self.id, email=self.email, name=self.name)


class SOAPRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    title: str
    subjective: str = ""
    objective: str = ""
    assessment: str = ""
    plan: str = ""


class NoteCreate(_WireModel):
    title: str
    subjective: str
    objective: str
    assessment: str
    plan: str
    raw_input: str
    audio_url: Optional[str] = None
    user_id: str

    @classmethod
    def from_record(
        cls,
        record: SOAPRecord,
        *,
        raw_input: str,
        user_id: str,
        audio_url: Optional[str] = None,
    ) -> "NoteCreate":
        return cls(
            title=record.title,
            subjective=record.subjective,
            objective=record.objective,
            assessment=record.assessment,
            plan=record.plan,
            raw_input=raw_input,
            audio_url=audio_url,
            user_id=user_id,
        )


class Note(_WireModel):
    id: str
    title: str
    subjective: str = ""
    objective: str = ""
    assessment: str = ""
    plan: str = ""
    raw_input: str
    audio_url: Optional[str] = None
    created_at: datetime
    user_id: str
    user: Optional[UserSummary] = None

