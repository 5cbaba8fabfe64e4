from __future__ import annotations

"""
Defensive parsing of generative SOAP output into an always-persistable record.

Design intent:
- Model output is untrusted text: fenced, partial, or not JSON at all.
- Parsing yields an explicit ParseOk | ParseFailed result; record construction
  from that result is deterministic and never raises.
- On ParseFailed the whole source text lands in `subjective` so no clinical
  information is lost.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from soapify.internal_core.contracts import DEFAULT_NOTE_TITLE, SOAP_SECTIONS, SOAPRecord
from soapify.internal_core.logging_setup import preview

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\n?|\n?```", flags=re.IGNORECASE)


@dataclass(frozen=True)
class ParseOk:
    payload: dict[str, Any]


@dataclass(frozen=True)
class ParseFailed:
    reason: str


ParseResult = Union[ParseOk, ParseFailed]


def strip_formatting_fences(raw: str) -> str:
    return _FENCE_RE.sub("", raw or "").strip()


def parse_model_output(raw: str) -> ParseResult:
    cleaned = strip_formatting_fences(raw)
    if not cleaned:
        return ParseFailed(reason="empty_output")
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        return ParseFailed(reason=f"invalid_json: {exc}")
    if not isinstance(data, dict):
        return ParseFailed(reason=f"not_an_object: {type(data).__name__}")
    return ParseOk(payload=data)


def resolve_title(caller_title: Optional[str]) -> str:
    title = str(caller_title or "").strip()
    return title or DEFAULT_NOTE_TITLE


def _field_text(value: Any) -> str:
    if value is None or value is False:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = [item if isinstance(item, str) else json.dumps(item, ensure_ascii=False) for item in value]
        return "\n".join(part for part in parts if part.strip())
    if isinstance(value, (int, float)) and not value:
        return ""
    if isinstance(value, dict) and not value:
        return ""
    return json.dumps(value, ensure_ascii=False)


def build_soap_record(
    result: ParseResult,
    *,
    source_text: str,
    caller_title: Optional[str] = None,
) -> SOAPRecord:
    fallback_title = resolve_title(caller_title)

    if isinstance(result, ParseOk):
        payload = result.payload
        sections = {name: _field_text(payload.get(name)) for name in SOAP_SECTIONS}
        return SOAPRecord(
            title=_field_text(payload.get("title")) or fallback_title,
            **sections,
        )

    return SOAPRecord(
        title=fallback_title,
        subjective=source_text,
        objective="",
        assessment="",
        plan="",
    )


def normalize_model_output(
    raw: str,
    *,
    source_text: str,
    caller_title: Optional[str] = None,
) -> SOAPRecord:
    result = parse_model_output(raw)
    if isinstance(result, ParseFailed):
        logger.warning(
            "structured output unparseable, keeping source text as subjective reason=%s raw=%s",
            preview(result.reason),
            preview(raw),
        )
    return build_soap_record(result, source_text=source_text, caller_title=caller_title)
