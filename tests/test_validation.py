from __future__ import annotations

import pytest

from insightboard.errors import ValidationError
from insightboard.models import AnalysisRequest
from insightboard.validation import ValidationOptions, validate_request


@pytest.mark.parametrize("length", [3, 4, 500, 9_999, 10_000])
def test_validate_accepts_topics_within_bounds(length: int) -> None:
    validate_request(AnalysisRequest(topic="a" * length))


@pytest.mark.parametrize("topic", [None, "", "   ", "\n\t", 42])
def test_validate_rejects_missing_or_blank_topic(topic) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_request(AnalysisRequest(topic=topic))

    assert excinfo.value.message == "A valid topic is required for analysis."
    assert excinfo.value.status_code == 400
    assert excinfo.value.retryable is False


def test_validate_rejects_short_topic_with_configured_minimum() -> None:
    with pytest.raises(ValidationError, match=r"minimum 3 characters"):
        validate_request(AnalysisRequest(topic="AB"))

    with pytest.raises(ValidationError, match=r"minimum 5 characters"):
        validate_request(AnalysisRequest(topic="ABC"), ValidationOptions(min_length=5, max_length=100))


def test_validate_rejects_long_topic_with_configured_maximum() -> None:
    with pytest.raises(ValidationError, match=r"\(10000 characters\)"):
        validate_request(AnalysisRequest(topic="A" * 10_001))

    with pytest.raises(ValidationError, match=r"\(20 characters\)"):
        validate_request({"topic": "A" * 21}, ValidationOptions(min_length=1, max_length=20))


def test_validate_accepts_raw_mapping_and_rejects_missing_request() -> None:
    validate_request({"topic": "AI ethics"})

    with pytest.raises(ValidationError):
        validate_request({})
    with pytest.raises(ValidationError):
        validate_request(None)
