"""Interpret upstream model replies as insight results, degrading to a fallback."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Union

from .errors import MalformedResponseError
from .models import InsightResult, KeyConcept, RelatedLink

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "The model returned a response in an unexpected format. Please try again."
FALLBACK_CONCEPT = KeyConcept(
    name="Format error",
    color="red",
    description="The model could not produce valid JSON",
)
FALLBACK_LINK = RelatedLink(title="Ollama documentation", url="https://ollama.com/docs")

_UPSTREAM_COUNTERS = (
    "model",
    "total_duration",
    "load_duration",
    "prompt_eval_count",
    "eval_count",
)


@dataclass(frozen=True, slots=True)
class ParsedInsight:
    """Upstream reply that satisfied the insight shape."""

    summary: str
    key_concepts: tuple[KeyConcept, ...]
    related_links: tuple[RelatedLink, ...]
    metadata: dict[str, Any]


@dataclass(frozen=True, slots=True)
class FallbackInsight:
    """Upstream reply that could not be interpreted."""

    raw_text: Any
    reason: str


ParseOutcome = Union[ParsedInsight, FallbackInsight]


def parse_insight(body: Any) -> ParseOutcome:
    """Parse ``body["response"]`` as JSON and validate the insight shape."""

    raw_text = body.get("response") if isinstance(body, Mapping) else body
    try:
        payload = _decode(raw_text)
        summary = payload.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise MalformedResponseError("summary must be a non-empty string")
        concepts = payload.get("keyConcepts")
        if not isinstance(concepts, list):
            raise MalformedResponseError("keyConcepts must be an array")
        links = payload.get("relatedLinks")
        if not isinstance(links, list):
            raise MalformedResponseError("relatedLinks must be an array")
    except MalformedResponseError as exc:
        return FallbackInsight(raw_text=raw_text, reason=exc.message)

    return ParsedInsight(
        summary=summary,
        key_concepts=tuple(_coerce_concept(item) for item in concepts),
        related_links=tuple(_coerce_link(item) for item in links),
        metadata=_upstream_metadata(body),
    )


def normalize(body: Any, *, metrics: "MetricsRecorder" | None = None) -> InsightResult:
    """Turn an upstream body into an :class:`InsightResult`. Never raises."""

    outcome = parse_insight(body)
    if isinstance(outcome, ParsedInsight):
        return InsightResult(
            summary=outcome.summary,
            key_concepts=outcome.key_concepts,
            related_links=outcome.related_links,
            metadata=outcome.metadata,
        )

    logger.warning("insight.normalize.fallback reason=%s", outcome.reason)
    if metrics:
        metrics.increment("insight.normalize.fallback")
    return InsightResult(
        summary=FALLBACK_SUMMARY,
        key_concepts=(FALLBACK_CONCEPT,),
        related_links=(FALLBACK_LINK,),
        metadata={"rawResponse": outcome.raw_text, "fallbackReason": outcome.reason},
    )


def _decode(raw_text: Any) -> Mapping[str, Any]:
    if not isinstance(raw_text, str):
        raise MalformedResponseError("response field is missing or not a string")
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"response is not valid JSON: {exc.msg}") from exc
    except RecursionError as exc:
        raise MalformedResponseError("response JSON is nested too deeply") from exc
    if not isinstance(payload, dict):
        raise MalformedResponseError("response JSON is not an object")
    return payload


def _coerce_concept(item: Any) -> KeyConcept:
    if isinstance(item, str):
        return KeyConcept(name=item, color="gray")
    if not isinstance(item, Mapping):
        return KeyConcept(name=str(item), color="gray")
    description = item.get("description")
    return KeyConcept(
        name=str(item.get("name") or ""),
        color=str(item.get("color") or "gray"),
        description=str(description) if description is not None else None,
    )


def _coerce_link(item: Any) -> RelatedLink:
    if not isinstance(item, Mapping):
        return RelatedLink(title=str(item), url="")
    return RelatedLink(title=str(item.get("title") or ""), url=str(item.get("url") or ""))


def _upstream_metadata(body: Any) -> dict[str, Any]:
    if not isinstance(body, Mapping):
        return {}
    return {key: body[key] for key in _UPSTREAM_COUNTERS if body.get(key) is not None}


__all__ = [
    "FALLBACK_CONCEPT",
    "FALLBACK_LINK",
    "FALLBACK_SUMMARY",
    "FallbackInsight",
    "ParseOutcome",
    "ParsedInsight",
    "normalize",
    "parse_insight",
]
