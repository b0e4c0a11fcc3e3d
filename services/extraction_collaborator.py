"""The one non-deterministic, fallible boundary of record recovery.

An extraction collaborator turns an isolated span of contract text into
records of a requested shape::

    records = collaborator.extract(instructions, text, TargetShape(ProductRecord))

Implementations either return validated pydantic records or raise
:class:`ExtractionError`; they never return partial garbage.  The cascade in
:mod:`services.record_recovery` catches that error per call and treats it as
"no records", so a misbehaving model can only cost recall.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Type

import ollama
from pydantic import BaseModel, ValidationError

from config.settings import settings
from services.lmstudio_client import LMStudioClient, LMStudioClientError
from utils.extraction_prompts import JSON_SUFFIX, SYSTEM_PROMPT

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_TYPE_KEYS = ("record_type", "recordType")


class ExtractionError(RuntimeError):
    """Raised when a collaborator call cannot produce records of the target shape."""


@dataclass(frozen=True)
class TargetShape:
    record_model: Type[BaseModel]
    many: bool = True
    collection_key: str = "records"

    @property
    def record_type(self) -> str:
        field = self.record_model.model_fields.get("record_type")
        default = getattr(field, "default", None) if field is not None else None
        return str(default or self.record_model.__name__.lower())


class ExtractionCollaborator(Protocol):
    def extract(
        self,
        instructions: str,
        text: str,
        target_shape: TargetShape,
        *,
        temperature: Optional[float] = None,
    ) -> List[BaseModel]:
        ...


def parse_json_payload(content: str) -> Any:
    """Parse a model reply that may wrap its JSON in a markdown fence."""

    if not isinstance(content, str) or not content.strip():
        raise ExtractionError("Collaborator returned an empty response")
    match = _FENCED_JSON.search(content)
    candidate = match.group(1) if match else content
    try:
        return json.loads(candidate.strip())
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Collaborator returned invalid JSON: {exc}") from exc


def _payload_items(payload: Any, shape: TargetShape) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise ExtractionError(
            f"Expected a JSON object or array, got {type(payload).__name__}"
        )
    for key in (shape.collection_key, "records", shape.record_type):
        value = payload.get(key)
        if isinstance(value, list):
            return value
    if shape.many and any(isinstance(value, list) for value in payload.values()):
        raise ExtractionError(
            f"Response does not contain a '{shape.collection_key}' collection"
        )
    return [payload]


def coerce_records(payload: Any, shape: TargetShape) -> List[BaseModel]:
    """Validate ``payload`` items against ``shape``, skipping invalid items."""

    records: List[BaseModel] = []
    for item in _payload_items(payload, shape):
        if not isinstance(item, dict):
            logger.debug("Skipping non-object item in collaborator response: %r", item)
            continue
        data = {key: value for key, value in item.items() if key not in _TYPE_KEYS}
        try:
            records.append(shape.record_model.model_validate(data))
        except ValidationError as exc:
            logger.warning(
                "Dropping %s item that failed validation: %s",
                shape.record_type,
                exc.errors()[:3],
            )
    if not shape.many:
        return records[:1]
    return records


class ChatExtractionCollaborator:
    """Shared prompt assembly and response parsing for chat-style backends."""

    def __init__(
        self,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.model = model or settings.extraction_model
        self.temperature = (
            temperature if temperature is not None else settings.extraction_temperature
        )
        self.max_tokens = max_tokens or settings.extraction_max_tokens

    @staticmethod
    def build_messages(instructions: str, text: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"{instructions}\n\n--- TEXT ---\n{text}{JSON_SUFFIX}"},
        ]

    def _complete(self, messages: List[Dict[str, str]], temperature: float) -> str:
        raise NotImplementedError

    def extract(
        self,
        instructions: str,
        text: str,
        target_shape: TargetShape,
        *,
        temperature: Optional[float] = None,
    ) -> List[BaseModel]:
        effective = self.temperature if temperature is None else temperature
        content = self._complete(self.build_messages(instructions, text), effective)
        return coerce_records(parse_json_payload(content), target_shape)


class LMStudioExtractionCollaborator(ChatExtractionCollaborator):
    """Collaborator backed by the LM Studio OpenAI-compatible server."""

    def __init__(self, client: Optional[LMStudioClient] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.client = client or LMStudioClient()

    def _complete(self, messages: List[Dict[str, str]], temperature: float) -> str:
        try:
            completion = self.client.complete(
                model=self.model,
                messages=messages,
                json_mode=True,
                options={"temperature": temperature, "max_tokens": self.max_tokens},
            )
        except LMStudioClientError as exc:
            raise ExtractionError(f"LM Studio call failed: {exc}") from exc
        if completion.truncated:
            logger.warning(
                "LM Studio reply hit max_tokens=%d; the JSON is probably incomplete",
                self.max_tokens,
            )
        return completion.content


class OllamaExtractionCollaborator(ChatExtractionCollaborator):
    """Collaborator backed by a local Ollama daemon."""

    def __init__(self, client: Optional[Any] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.client = client or ollama.Client(
            host=settings.ollama_host, timeout=settings.lmstudio_timeout
        )

    def _complete(self, messages: List[Dict[str, str]], temperature: float) -> str:
        try:
            response = self.client.chat(
                model=self.model,
                messages=messages,
                format="json",
                options={"temperature": temperature, "num_predict": self.max_tokens},
            )
        except Exception as exc:
            raise ExtractionError(f"Ollama call failed: {exc}") from exc
        try:
            return response["message"]["content"] or ""
        except (KeyError, TypeError) as exc:
            raise ExtractionError("Ollama response did not contain a message") from exc


def build_collaborator(backend: Optional[str] = None, **kwargs: Any) -> ChatExtractionCollaborator:
    """Return the collaborator for ``backend`` (defaults to ``settings.llm_backend``)."""

    name = (backend or settings.llm_backend or "lmstudio").strip().lower()
    if name == "ollama":
        return OllamaExtractionCollaborator(**kwargs)
    if name != "lmstudio":
        logger.warning("Unknown LLM backend '%s'; using LM Studio", name)
    return LMStudioExtractionCollaborator(**kwargs)


__all__ = [
    "ChatExtractionCollaborator",
    "ExtractionCollaborator",
    "ExtractionError",
    "LMStudioExtractionCollaborator",
    "OllamaExtractionCollaborator",
    "TargetShape",
    "build_collaborator",
    "coerce_records",
    "parse_json_payload",
]
