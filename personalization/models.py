"""Core domain dataclasses shared across all personalization modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from personalization.errors import InvalidParameter

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "crypto_market",
    "ai_tech",
    "political_narrative",
    "daily_focus",
    "wildcard",
)

# Older clients send the original feedback type names.
_LEGACY_FEEDBACK_ALIASES = {
    "thumbs_up": "like",
    "thumbs_down": "dislike",
    "detailed_rating": "rating",
}


class FeedbackType(str, Enum):
    """Kinds of reaction a user can give to a single briefing card."""

    LIKE = "like"
    DISLIKE = "dislike"
    SAVE = "save"
    SHARE = "share"
    HIDE = "hide"
    REPORT = "report"
    RATING = "rating"

    @classmethod
    def parse(cls, value: str) -> FeedbackType:
        """Return the member for *value*, accepting legacy wire names.

        Raises:
            InvalidParameter: If *value* names no known feedback type.
        """
        normalized = _LEGACY_FEEDBACK_ALIASES.get(value, value)
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidParameter(f"Unknown feedback type {value!r}") from None


class Sentiment(str, Enum):
    """Direction a feedback event pushes a topic weight."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class FeedbackEvent:
    """A single user reaction to one content card.

    Attributes:
        type: The kind of reaction.
        topic: Category of the card the reaction was given on.
        timestamp: When the reaction occurred (UTC).
        source_id: Content source of the card, if known.
        rating: Explicit 1–5 rating; usually set only for
            :attr:`FeedbackType.RATING` but accepted on any type.
        block_source: For :attr:`FeedbackType.HIDE` and
            :attr:`FeedbackType.REPORT` only: also block *source_id*.
        duration_seconds: Time spent on the card before reacting.
        completed: Whether the card was read to the end.
    """

    type: FeedbackType
    topic: str
    timestamp: datetime
    source_id: str | None = None
    rating: int | None = None
    block_source: bool = False
    duration_seconds: float | None = None
    completed: bool | None = None


@dataclass(frozen=True)
class BriefingStats:
    """Aggregate engagement for one finished briefing."""

    cards_shown: int
    cards_read: int
    reading_time: float
    rating: int | None = None


@dataclass(frozen=True)
class CandidateItem:
    """A piece of raw content eligible for inclusion in a briefing.

    The three scores are computed upstream by the content-source adapters and
    are expected to lie in ``[0, 1]``.
    """

    item_id: str
    category: str
    source_id: str
    quality_score: float
    freshness_score: float
    relevance_score: float


@dataclass
class ReadingPattern:
    """One implicit reading observation (when, what and how long)."""

    time_of_day: str
    day_of_week: str
    topics: list[str]
    reading_time: float
    completed: bool


@dataclass
class EngagementHistory:
    """Running averages over all briefings the user has finished.

    ``completion_rate`` is a percentage in ``[0, 100]``.
    """

    total_briefings: int = 0
    average_cards_per_briefing: float = 0.0
    average_reading_time: float = 0.0
    completion_rate: float = 0.0
    feedback_score: float = 0.0


@dataclass
class TopicInteractions:
    """Per-category counts of feedback events by sentiment."""

    positive: dict[str, int] = field(default_factory=dict)
    negative: dict[str, int] = field(default_factory=dict)
    neutral: dict[str, int] = field(default_factory=dict)
    total: dict[str, int] = field(default_factory=dict)

    def counts_for(self, sentiment: Sentiment) -> dict[str, int]:
        return getattr(self, sentiment.value)


@dataclass
class SourceAffinity:
    """Learned positive/negative counts per content source plus a block-list."""

    positive: dict[str, int] = field(default_factory=dict)
    negative: dict[str, int] = field(default_factory=dict)
    blocked: set[str] = field(default_factory=set)


@dataclass
class InterestProfile:
    """Per-user topic weights and engagement state driving content ranking.

    Profiles are treated as values: the update functions in
    :mod:`personalization.profile` return a modified copy and never touch
    the instance they were given.

    Attributes:
        user_id: Opaque identifier of the owning user.
        topic_weights: Interest weight per category. Every weight is in
            ``[0, 1]`` and the weights sum to 1.0.
        engagement_history: Briefing-level running averages.
        topic_interactions: Feedback counts per category.
        source_affinity: Feedback counts and blocks per content source.
        reading_patterns: Most recent implicit reading observations.
        feedback_count: Number of feedback events applied.
        training_iterations: Number of times ``topic_weights`` changed.
    """

    user_id: str
    topic_weights: dict[str, float] = field(default_factory=dict)
    engagement_history: EngagementHistory = field(default_factory=EngagementHistory)
    topic_interactions: TopicInteractions = field(default_factory=TopicInteractions)
    source_affinity: SourceAffinity = field(default_factory=SourceAffinity)
    reading_patterns: list[ReadingPattern] = field(default_factory=list)
    feedback_count: int = 0
    training_iterations: int = 0
