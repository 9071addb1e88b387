"""Shared pytest fixtures for all personalization tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from personalization.models import CandidateItem, FeedbackEvent, FeedbackType, InterestProfile


TS = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_event(
    type: FeedbackType,
    topic: str = "ai_tech",
    **kwargs,
) -> FeedbackEvent:
    return FeedbackEvent(type=type, topic=topic, timestamp=TS, **kwargs)


def make_item(
    item_id: str,
    category: str,
    quality: float = 0.5,
    freshness: float = 0.5,
    relevance: float = 0.5,
    source_id: str = "reuters",
) -> CandidateItem:
    return CandidateItem(item_id, category, source_id, quality, freshness, relevance)


# ---------------------------------------------------------------------------
# Profile fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def even_profile() -> InterestProfile:
    """Two topics at equal weight."""
    return InterestProfile(
        user_id="u_even",
        topic_weights={"crypto_market": 0.5, "ai_tech": 0.5},
    )


@pytest.fixture
def ai_fan_profile() -> InterestProfile:
    """A user who strongly prefers AI coverage."""
    return InterestProfile(
        user_id="u_ai",
        topic_weights={"ai_tech": 0.9, "crypto_market": 0.1},
    )


# ---------------------------------------------------------------------------
# Candidate fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mixed_candidates() -> list[CandidateItem]:
    """10 candidates: 7 AI stories and 3 crypto stories."""
    ai = [
        make_item(f"ai_{i}", "ai_tech", freshness=0.9 - i * 0.1)
        for i in range(7)
    ]
    crypto = [
        make_item(f"cr_{i}", "crypto_market", freshness=0.8 - i * 0.1)
        for i in range(3)
    ]
    return ai + crypto
