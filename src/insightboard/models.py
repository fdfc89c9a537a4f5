"""Data model for analysis requests and insight results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

DEFAULT_MODEL = "llama3.2:latest"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_LANGUAGE = "ru"


def _clamp_temperature(value: Any, default: float) -> float:
    try:
        temperature = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(temperature, 0.0), 1.0)


@dataclass(frozen=True, slots=True)
class ModelParams:
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any] | None,
        *,
        default_model: str = DEFAULT_MODEL,
        default_temperature: float = DEFAULT_TEMPERATURE,
    ) -> "ModelParams":
        payload = payload or {}
        model = str(payload.get("model") or "").strip() or default_model
        temperature = payload.get("temperature")
        if temperature is None:
            return cls(model=model, temperature=default_temperature)
        return cls(model=model, temperature=_clamp_temperature(temperature, default_temperature))

    def to_payload(self) -> dict[str, Any]:
        return {"model": self.model, "temperature": self.temperature}


@dataclass(frozen=True, slots=True)
class FileInfo:
    """Describes the uploaded document a topic was extracted from."""

    name: str
    size_label: str
    char_count: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "FileInfo | None":
        if not payload:
            return None
        try:
            char_count = int(payload.get("chars", 0) or 0)
        except (TypeError, ValueError):
            char_count = 0
        return cls(
            name=str(payload.get("name") or ""),
            size_label=str(payload.get("size") or ""),
            char_count=max(char_count, 0),
        )

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "size": self.size_label, "chars": self.char_count}


@dataclass(frozen=True, slots=True)
class AnalysisRequest:
    """A topic (or extracted document text) submitted for analysis."""

    topic: Any
    language: str = DEFAULT_LANGUAGE
    model_params: ModelParams = field(default_factory=ModelParams)
    file_info: FileInfo | None = None

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        default_model: str = DEFAULT_MODEL,
        default_temperature: float = DEFAULT_TEMPERATURE,
        default_language: str = DEFAULT_LANGUAGE,
    ) -> "AnalysisRequest":
        """Build a request from the camelCase wire shape.

        The topic is taken as-is; length and type checks belong to
        :func:`insightboard.validation.validate_request`.
        """

        params = payload.get("modelParams")
        return cls(
            topic=payload.get("topic"),
            language=str(payload.get("language") or "").strip() or default_language,
            model_params=ModelParams.from_payload(
                params if isinstance(params, Mapping) else None,
                default_model=default_model,
                default_temperature=default_temperature,
            ),
            file_info=FileInfo.from_payload(
                payload.get("fileInfo") if isinstance(payload.get("fileInfo"), Mapping) else None
            ),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "topic": self.topic,
            "language": self.language,
            "modelParams": self.model_params.to_payload(),
        }
        if self.file_info is not None:
            payload["fileInfo"] = self.file_info.to_payload()
        return payload


@dataclass(frozen=True, slots=True)
class KeyConcept:
    name: str
    color: str
    description: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "color": self.color}
        if self.description is not None:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True, slots=True)
class RelatedLink:
    title: str
    url: str

    def to_payload(self) -> dict[str, Any]:
        return {"title": self.title, "url": self.url}


@dataclass(frozen=True, slots=True)
class InsightResult:
    """Structured analysis produced once per successful request."""

    summary: str
    key_concepts: tuple[KeyConcept, ...] = ()
    related_links: tuple[RelatedLink, ...] = ()
    generation_time_ms: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "key_concepts", tuple(self.key_concepts))
        object.__setattr__(self, "related_links", tuple(self.related_links))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def with_timing(self, elapsed_ms: int, *, request_length: int, timestamp: str) -> "InsightResult":
        """Return a copy stamped with generation time and request metadata."""

        metadata = dict(self.metadata)
        metadata["requestLength"] = request_length
        metadata["timestamp"] = timestamp
        return replace(self, generation_time_ms=max(int(elapsed_ms), 0), metadata=metadata)

    def to_payload(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "keyConcepts": [concept.to_payload() for concept in self.key_concepts],
            "relatedLinks": [link.to_payload() for link in self.related_links],
            "generationTimeMs": self.generation_time_ms,
            "metadata": dict(self.metadata),
        }


CHAT_ROLES = frozenset({"system", "user", "assistant"})


@dataclass(frozen=True, slots=True)
class ChatTurn:
    """One message of a conversation as sent to the model."""

    role: str
    content: str

    def to_payload(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class ChatReply:
    content: str
    model: str
    generation_time_ms: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {"reply": self.content, "model": self.model, "generationTimeMs": self.generation_time_ms}


__all__ = [
    "AnalysisRequest",
    "CHAT_ROLES",
    "ChatReply",
    "ChatTurn",
    "FileInfo",
    "InsightResult",
    "KeyConcept",
    "ModelParams",
    "RelatedLink",
]
