"""Offline insight generator used when the gateway runs with mock data."""

from __future__ import annotations

import random
from dataclasses import dataclass

from .models import InsightResult, KeyConcept, RelatedLink

MOCK_MIN_LATENCY = 0.8
MOCK_MAX_LATENCY = 2.0


@dataclass(frozen=True, slots=True)
class _DomainBucket:
    name: str
    keywords: tuple[str, ...]
    concepts: tuple[KeyConcept, ...]
    links: tuple[RelatedLink, ...]


_AI_BUCKET = _DomainBucket(
    name="artificial intelligence",
    keywords=("artificial", "ai", "neural", "machine learning", "искусствен", "ии"),
    concepts=(
        KeyConcept("Neural networks", "blue"),
        KeyConcept("Transformers", "purple"),
        KeyConcept("Machine learning", "green"),
        KeyConcept("Generative AI", "yellow"),
        KeyConcept("AI ethics", "red"),
        KeyConcept("Model evaluation", "teal"),
    ),
    links=(
        RelatedLink("Foundations of artificial intelligence", "https://example.com/ai-basics"),
        RelatedLink("Neural networks and deep learning", "https://example.com/neural-networks"),
        RelatedLink("Ethical challenges in AI", "https://example.com/ai-ethics"),
        RelatedLink("Evaluating machine learning models", "https://example.com/ml-evaluation"),
    ),
)

_NLP_BUCKET = _DomainBucket(
    name="natural language processing",
    keywords=("nlp", "language", "translat", "linguist", "язык", "перевод"),
    concepts=(
        KeyConcept("Natural language processing", "blue"),
        KeyConcept("Sentiment analysis", "purple"),
        KeyConcept("Multilingual models", "green"),
        KeyConcept("Language transformers", "yellow"),
        KeyConcept("Semantic analysis", "red"),
        KeyConcept("Tokenization", "teal"),
    ),
    links=(
        RelatedLink("Introduction to natural language processing", "https://example.com/nlp-intro"),
        RelatedLink("Transformers and language models", "https://example.com/transformers"),
        RelatedLink("Multilingual text analysis", "https://example.com/multilingual-nlp"),
        RelatedLink("Tokenization strategies", "https://example.com/tokenization"),
    ),
)

_GENERIC_BUCKET = _DomainBucket(
    name="technology",
    keywords=(),
    concepts=(
        KeyConcept("Data analytics", "blue"),
        KeyConcept("Machine learning", "purple"),
        KeyConcept("Algorithmic efficiency", "green"),
        KeyConcept("Digital transformation", "yellow"),
        KeyConcept("Technology ethics", "red"),
        KeyConcept("Information architecture", "teal"),
    ),
    links=(
        RelatedLink("Introduction to data analysis", "https://example.com/data-analysis-intro"),
        RelatedLink("Modern information processing", "https://example.com/modern-tech"),
        RelatedLink("Ethical aspects of technology", "https://example.com/tech-ethics"),
        RelatedLink("Designing information systems", "https://example.com/information-systems"),
    ),
)


def _match_bucket(topic: str) -> _DomainBucket:
    lowered = topic.lower()
    words = set(lowered.replace(",", " ").replace(".", " ").split())
    for bucket in (_AI_BUCKET, _NLP_BUCKET):
        for keyword in bucket.keywords:
            # Short keywords ("ai", "ии") only count as whole words.
            if len(keyword) <= 2:
                if keyword in words:
                    return bucket
            elif keyword in lowered:
                return bucket
    return _GENERIC_BUCKET


def _summary_for(bucket: _DomainBucket) -> str:
    return (
        f"This text covers the core concepts of {bucket.name} and their practical use. "
        f"It reviews the key methods and tools applied in the field along with current trends. "
        f"Particular attention is paid to how {bucket.name} is applied in business and research. "
        "The material targets intermediate readers with a basic familiarity with the subject."
    )


def generate_mock_insight(topic: str, rng: random.Random | None = None) -> InsightResult:
    """Derive a plausible insight from keyword matches against ``topic``."""

    rng = rng or random.Random()
    bucket = _match_bucket(topic)
    concept_count = rng.randint(3, min(6, len(bucket.concepts)))
    link_count = rng.randint(2, min(4, len(bucket.links)))
    return InsightResult(
        summary=_summary_for(bucket),
        key_concepts=bucket.concepts[:concept_count],
        related_links=bucket.links[:link_count],
        metadata={"mock": True, "domain": bucket.name},
    )


def generate_mock_reply(prompt: str) -> str:
    """Canned chat answer naming the matched domain of the last user message."""

    bucket = _match_bucket(prompt)
    snippet = " ".join(prompt.split())
    if len(snippet) > 80:
        snippet = snippet[:77] + "..."
    return (
        f'Offline reply to "{snippet}". This looks like a question about {bucket.name}. '
        "Connect a model server to get a generated answer."
    )


def mock_latency_seconds(rng: random.Random | None = None) -> float:
    rng = rng or random.Random()
    return rng.uniform(MOCK_MIN_LATENCY, MOCK_MAX_LATENCY)


__all__ = ["generate_mock_insight", "generate_mock_reply", "mock_latency_seconds"]
