"""Interest profile updates: feedback learning, engagement averages, affinities.

Every update function validates its inputs first and then applies the change
to a deep copy, so a rejected call never leaves a half-updated profile behind
and the caller's instance is never mutated.
"""

from __future__ import annotations

import copy
import logging
import math
from collections import Counter
from collections.abc import Iterable, Mapping

from personalization.errors import InvalidParameter
from personalization.models import (
    DEFAULT_CATEGORIES,
    BriefingStats,
    FeedbackEvent,
    FeedbackType,
    InterestProfile,
    ReadingPattern,
    Sentiment,
)

logger = logging.getLogger(__name__)

DEFAULT_LEARNING_RATE = 0.1
DEFAULT_MAX_READING_PATTERNS = 100

_POSITIVE_TYPES = frozenset({FeedbackType.LIKE, FeedbackType.SAVE, FeedbackType.SHARE})
_NEGATIVE_TYPES = frozenset({FeedbackType.DISLIKE, FeedbackType.HIDE, FeedbackType.REPORT})
_BLOCKING_TYPES = frozenset({FeedbackType.HIDE, FeedbackType.REPORT})

_POSITIVE_RATING = 4  # ratings >= this are positive
_NEGATIVE_RATING = 2  # ratings <= this are negative

# Stand-in for a numeric rating when averaging feedback without one.
_SENTIMENT_PROXY = {
    Sentiment.POSITIVE: 1.0,
    Sentiment.NEGATIVE: -1.0,
    Sentiment.NEUTRAL: 0.0,
}

_NEUTRAL_AFFINITY = 0.5
_TOP_PREFERRED_TOPICS = 3


# ---------------------------------------------------------------------------
# Construction and normalisation
# ---------------------------------------------------------------------------


def new_profile(
    user_id: str, default_weights: Mapping[str, float] | None = None
) -> InterestProfile:
    """Create the profile a user starts with at signup.

    Args:
        user_id: The owning user. Must be non-empty.
        default_weights: Starting topic weights. Normalised before use;
            defaults to a uniform distribution over
            :data:`~personalization.models.DEFAULT_CATEGORIES`.

    Raises:
        InvalidParameter: If *user_id* is empty or a weight is negative or
            not finite.
    """
    if not user_id:
        raise InvalidParameter("user_id must be non-empty")
    weights = dict(default_weights) if default_weights else {c: 1.0 for c in DEFAULT_CATEGORIES}
    _validate_weights(weights)
    return InterestProfile(user_id=user_id, topic_weights=normalize_weights(weights))


def normalize_weights(weights: Mapping[str, float]) -> dict[str, float]:
    """Return *weights* rescaled to sum to 1.0.

    When the weights sum to zero, every known category gets an equal share
    (the default categories if *weights* is empty).
    """
    total = sum(weights.values())
    if total > 0:
        return {topic: weight / total for topic, weight in weights.items()}
    categories = list(weights) or list(DEFAULT_CATEGORIES)
    share = 1.0 / len(categories)
    return {topic: share for topic in categories}


# ---------------------------------------------------------------------------
# Explicit feedback
# ---------------------------------------------------------------------------


def classify_sentiment(event: FeedbackEvent) -> Sentiment:
    """Map a feedback event to the direction it pushes its topic.

    Positive types and high ratings are checked before negative ones, so a
    ``like`` carrying a low rating still counts as positive.
    """
    if event.type in _POSITIVE_TYPES or (
        event.rating is not None and event.rating >= _POSITIVE_RATING
    ):
        return Sentiment.POSITIVE
    if event.type in _NEGATIVE_TYPES or (
        event.rating is not None and event.rating <= _NEGATIVE_RATING
    ):
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def apply_feedback(
    profile: InterestProfile,
    event: FeedbackEvent,
    learning_rate: float = DEFAULT_LEARNING_RATE,
) -> InterestProfile:
    """Return *profile* updated with one feedback event.

    For positive and negative events the event's topic moves towards
    ``1.0`` or ``0.0`` by an exponential moving average
    (``old * (1 - lr) + signal * lr``) and the map is renormalised.
    Neutral events leave ``topic_weights`` untouched and only update the
    interaction counters.

    Args:
        profile: The current profile (not modified).
        event: The feedback to learn from.
        learning_rate: Step size in ``[0, 1]``.

    Returns:
        A new :class:`~personalization.models.InterestProfile`.

    Raises:
        InvalidParameter: On a bad learning rate, a corrupt stored weight,
            an empty topic or a rating outside 1–5.
    """
    validate_learning_rate(learning_rate)
    _validate_weights(profile.topic_weights)
    if not event.topic:
        raise InvalidParameter("Feedback topic must be non-empty")
    if event.rating is not None:
        _validate_rating(event.rating)

    updated = copy.deepcopy(profile)
    sentiment = classify_sentiment(event)

    if sentiment is not Sentiment.NEUTRAL:
        signal = 1.0 if sentiment is Sentiment.POSITIVE else 0.0
        weights = updated.topic_weights
        old = weights.get(event.topic, 0.0)
        weights[event.topic] = old * (1.0 - learning_rate) + signal * learning_rate
        updated.topic_weights = normalize_weights(weights)
        updated.training_iterations += 1

    _count_interaction(updated, event.topic, sentiment)

    updated.feedback_count += 1
    history = updated.engagement_history
    value = float(event.rating) if event.rating is not None else _SENTIMENT_PROXY[sentiment]
    n = updated.feedback_count
    history.feedback_score = (history.feedback_score * (n - 1) + value) / n

    if event.source_id:
        affinity = updated.source_affinity
        if sentiment is Sentiment.POSITIVE:
            affinity.positive[event.source_id] = affinity.positive.get(event.source_id, 0) + 1
        elif sentiment is Sentiment.NEGATIVE:
            affinity.negative[event.source_id] = affinity.negative.get(event.source_id, 0) + 1
        if event.block_source and event.type in _BLOCKING_TYPES:
            affinity.blocked.add(event.source_id)

    logger.debug(
        "Applied %s feedback (%s) on topic %r for user %r",
        event.type.value,
        sentiment.value,
        event.topic,
        profile.user_id,
    )
    return updated


def block_source(profile: InterestProfile, source_id: str) -> InterestProfile:
    """Return *profile* with *source_id* on the block-list."""
    if not source_id:
        raise InvalidParameter("source_id must be non-empty")
    updated = copy.deepcopy(profile)
    updated.source_affinity.blocked.add(source_id)
    return updated


def unblock_source(profile: InterestProfile, source_id: str) -> InterestProfile:
    """Return *profile* with *source_id* removed from the block-list."""
    updated = copy.deepcopy(profile)
    updated.source_affinity.blocked.discard(source_id)
    return updated


# ---------------------------------------------------------------------------
# Implicit signals
# ---------------------------------------------------------------------------


def record_engagement(profile: InterestProfile, stats: BriefingStats) -> InterestProfile:
    """Return *profile* with one finished briefing folded into its averages.

    Uses the incremental mean ``(old * (n - 1) + value) / n`` with
    ``n = total_briefings + 1``. The feedback score is only averaged when the
    briefing carries an explicit rating.

    Raises:
        InvalidParameter: If ``cards_shown`` is not positive, ``cards_read``
            is negative or exceeds ``cards_shown``, the reading time is
            negative or not finite, or the rating is outside 1–5.
    """
    if stats.cards_shown <= 0:
        raise InvalidParameter(f"cards_shown must be positive, got {stats.cards_shown!r}")
    if not 0 <= stats.cards_read <= stats.cards_shown:
        raise InvalidParameter(
            f"cards_read must be between 0 and {stats.cards_shown}, got {stats.cards_read!r}"
        )
    if not math.isfinite(stats.reading_time) or stats.reading_time < 0:
        raise InvalidParameter(
            f"reading_time must be a non-negative number, got {stats.reading_time!r}"
        )
    if stats.rating is not None:
        _validate_rating(stats.rating)

    updated = copy.deepcopy(profile)
    history = updated.engagement_history
    n = history.total_briefings + 1
    completion = stats.cards_read / stats.cards_shown * 100.0

    history.average_cards_per_briefing = _running_mean(
        history.average_cards_per_briefing, stats.cards_read, n
    )
    history.average_reading_time = _running_mean(
        history.average_reading_time, stats.reading_time, n
    )
    history.completion_rate = _running_mean(history.completion_rate, completion, n)
    if stats.rating is not None:
        history.feedback_score = _running_mean(history.feedback_score, stats.rating, n)
    history.total_briefings = n

    logger.debug(
        "Recorded briefing %d for user %r (read %d/%d cards)",
        n,
        profile.user_id,
        stats.cards_read,
        stats.cards_shown,
    )
    return updated


def record_reading(
    profile: InterestProfile,
    pattern: ReadingPattern,
    max_patterns: int = DEFAULT_MAX_READING_PATTERNS,
) -> InterestProfile:
    """Return *profile* with *pattern* appended, keeping the newest *max_patterns*."""
    if not math.isfinite(pattern.reading_time) or pattern.reading_time < 0:
        raise InvalidParameter(
            f"reading_time must be a non-negative number, got {pattern.reading_time!r}"
        )
    if max_patterns < 1:
        raise InvalidParameter(f"max_patterns must be positive, got {max_patterns!r}")
    updated = copy.deepcopy(profile)
    updated.reading_patterns.append(copy.deepcopy(pattern))
    if len(updated.reading_patterns) > max_patterns:
        updated.reading_patterns = updated.reading_patterns[-max_patterns:]
    return updated


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------


def topic_affinity(profile: InterestProfile, topic: str) -> float:
    """Share of *topic*'s feedback that was positive; 0.5 with no feedback."""
    total = profile.topic_interactions.total.get(topic, 0)
    if total == 0:
        return _NEUTRAL_AFFINITY
    return profile.topic_interactions.positive.get(topic, 0) / total


def source_affinity(profile: InterestProfile, source_id: str) -> float:
    """Learned preference for *source_id* in ``[0, 1]``.

    Blocked sources score ``0.0`` and unseen ones ``0.5``.
    """
    affinity = profile.source_affinity
    if source_id in affinity.blocked:
        return 0.0
    positive = affinity.positive.get(source_id, 0)
    negative = affinity.negative.get(source_id, 0)
    if positive + negative == 0:
        return _NEUTRAL_AFFINITY
    return positive / (positive + negative)


def preferred_topics(profile: InterestProfile, time_of_day: str | None = None) -> list[str]:
    """Return the user's favourite topics, optionally for one time of day.

    With matching reading patterns, returns the three topics that appear in
    them most often. Otherwise returns every weighted topic, heaviest first.
    """
    patterns: Iterable[ReadingPattern] = profile.reading_patterns
    if time_of_day is not None:
        patterns = [p for p in profile.reading_patterns if p.time_of_day == time_of_day]
    counts = Counter(topic for p in patterns for topic in p.topics)
    if not counts:
        return sorted(profile.topic_weights, key=lambda t: profile.topic_weights[t], reverse=True)
    return [topic for topic, _ in counts.most_common(_TOP_PREFERRED_TOPICS)]


def profile_completeness(profile: InterestProfile) -> float:
    """How much signal the profile holds, in steps of 0.2 from 0.0 to 1.0."""
    factors = (
        profile.training_iterations > 0,
        profile.engagement_history.total_briefings > 5,
        bool(profile.reading_patterns),
        bool(profile.topic_interactions.total),
        bool(profile.source_affinity.positive),
    )
    return round(0.2 * sum(factors), 10)


def satisfaction_score(profile: InterestProfile) -> float:
    """Mean of the completion rate and feedback score, each scaled to ``[0, 1]``."""
    history = profile.engagement_history
    engagement = min(1.0, history.completion_rate / 100.0)
    feedback = max(0.0, min(1.0, history.feedback_score / 5.0))
    return (engagement + feedback) / 2


def is_profile_sufficient(profile: InterestProfile) -> bool:
    """Whether the profile has enough history to personalise confidently."""
    return (
        profile_completeness(profile) >= 0.6
        and profile.engagement_history.total_briefings >= 3
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _count_interaction(profile: InterestProfile, topic: str, sentiment: Sentiment) -> None:
    interactions = profile.topic_interactions
    counts = interactions.counts_for(sentiment)
    counts[topic] = counts.get(topic, 0) + 1
    interactions.total[topic] = interactions.total.get(topic, 0) + 1


def _running_mean(old: float, value: float, n: int) -> float:
    return (old * (n - 1) + value) / n


def validate_learning_rate(learning_rate: float) -> None:
    """Raise :class:`InvalidParameter` unless *learning_rate* is finite and in ``[0, 1]``."""
    if not (math.isfinite(learning_rate) and 0.0 <= learning_rate <= 1.0):
        raise InvalidParameter(
            f"learning_rate must be within [0, 1], got {learning_rate!r}"
        )


def _validate_rating(rating: float) -> None:
    if not 1 <= rating <= 5:
        raise InvalidParameter(f"Rating must be between 1 and 5, got {rating!r}")


def _validate_weights(weights: Mapping[str, float]) -> None:
    for topic, weight in weights.items():
        if not math.isfinite(weight) or weight < 0:
            raise InvalidParameter(f"Weight for topic {topic!r} is invalid: {weight!r}")
