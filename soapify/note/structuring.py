from __future__ import annotations

"""
Turn free clinical text into a raw SOAP JSON candidate with a generative model.

Design intent:
- One completion request per note, fixed instruction, low temperature, capped output.
- Only transport/service errors fail here; whatever text comes back is handed
  to the normalizer untouched, however malformed.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from soapify.internal_core.contracts import SourceKind
from soapify.internal_core.errors import CompletionFailure

logger = logging.getLogger(__name__)

SOAP_SYSTEM_PROMPT = """You are an expert medical documentation assistant. Convert the following clinical note into a structured SOAP format.

SOAP format explained:
- **Subjective (S)**: Patient's symptoms, complaints, history, and concerns in their own words. Include chief complaint, history of present illness, and relevant patient statements.
- **Objective (O)**: Observable, measurable findings. Include vital signs, physical examination findings, lab results, imaging results, and other objective data.
- **Assessment (A)**: Clinical interpretation, diagnosis, and clinical reasoning. Include differential diagnoses, working diagnosis, and clinical impression.
- **Plan (P)**: Treatment plan, medications, procedures, follow-up, patient education, and next steps.

Rules:
1. Respond ONLY with valid JSON in this exact format - no markdown, no explanation
2. Extract information accurately from the input
3. If a section has no relevant information, use an empty string ""
4. Generate a concise, descriptive title (max 60 characters)
5. Use proper medical terminology where appropriate
6. Be thorough but concise

JSON format:
{
  "title": "Brief descriptive title",
  "subjective": "Subjective findings",
  "objective": "Objective findings",
  "assessment": "Clinical assessment",
  "plan": "Treatment plan"
}"""

_USER_PREFIX_BY_SOURCE: dict[str, str] = {
    "audio": "Transcribed clinical note:",
    "text": "Clinical note:",
}


class CompletionProvider(ABC):
    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        *,
        temperature: float,
        max_output_tokens: int,
    ) -> str: ...

    @abstractmethod
    def name(self) -> str: ...


class OpenAIChatCompletionProvider(CompletionProvider):
    def __init__(self, client: Any, model: str = "gpt-4o-mini") -> None:
        self._client = client
        self._model = model

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        *,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        if self._client is None:
            raise CompletionFailure("OpenAI API key is not configured.", self.name())
        try:
            resp = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_text},
                ],
                temperature=float(temperature),
                max_tokens=int(max_output_tokens),
            )
        except Exception as exc:
            raise CompletionFailure(f"Completion request failed: {exc}", self.name()) from exc

        # An empty or missing message is still a successful call.
        choices = getattr(resp, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        return str(getattr(message, "content", None) or "")

    def name(self) -> str:
        return f"openai:{self._model}"


class MockCompletionProvider(CompletionProvider):
    def __init__(self, responses: Optional[Sequence[str]] = None, *, fail_with: Optional[str] = None) -> None:
        self._responses = list(responses or [])
        self._fail_with = fail_with
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        *,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_text": user_text,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            }
        )
        if self._fail_with is not None:
            raise CompletionFailure(self._fail_with, self.name())
        if not self._responses:
            return '{"title": "Mock Note", "subjective": "", "objective": "", "assessment": "", "plan": ""}'
        if len(self._responses) == 1:
            return self._responses[0]
        return self._responses.pop(0)

    def name(self) -> str:
        return "mock"


def build_user_message(source_text: str, source_kind: SourceKind) -> str:
    prefix = _USER_PREFIX_BY_SOURCE.get(source_kind, _USER_PREFIX_BY_SOURCE["text"])
    return f"{prefix}\n\n{source_text}"


async def structure_clinical_text(
    provider: CompletionProvider,
    source_text: str,
    *,
    source_kind: SourceKind,
    temperature: float = 0.3,
    max_output_tokens: int = 2000,
) -> str:
    try:
        raw = await provider.complete(
            SOAP_SYSTEM_PROMPT,
            build_user_message(source_text, source_kind),
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
    except CompletionFailure:
        raise
    except Exception as exc:
        raise CompletionFailure(f"Completion request failed: {exc}", provider.name()) from exc

    logger.info(
        "structuring complete provider=%s source=%s output_chars=%d",
        provider.name(),
        source_kind,
        len(raw or ""),
    )
    return raw or ""
