"""Personalization engine: the configured facade over profile learning and ranking."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from personalization import profile as profiles
from personalization.diversity import DiversityConstraint, ShareCapConstraint
from personalization.models import (
    BriefingStats,
    CandidateItem,
    FeedbackEvent,
    InterestProfile,
    ReadingPattern,
)
from personalization.scoring import DEFAULT_SCORING_WEIGHTS, ScoringWeights, score
from personalization.selection import select_top_n

logger = logging.getLogger(__name__)


class PersonalizationEngine:
    """Learns per-user topic weights and ranks candidate items for briefings.

    The engine holds configuration only; it keeps no per-user state and does
    no I/O. Profiles go in and updated copies come out, so callers own
    persistence and must serialise writes to the same profile (see
    :class:`~personalization.store.ProfileStore`).

    Args:
        learning_rate: Default EMA step for :meth:`apply_feedback`.
        default_weights: Topic weights given to new profiles.
        scoring_weights: Coefficients for :meth:`score`.
        diversity: Per-category cap policy for :meth:`select_top_n`.
        max_reading_patterns: Reading observations kept per profile.

    Raises:
        InvalidParameter: If *learning_rate* is not finite or is outside ``[0, 1]``.
    """

    def __init__(
        self,
        learning_rate: float = profiles.DEFAULT_LEARNING_RATE,
        default_weights: Mapping[str, float] | None = None,
        scoring_weights: ScoringWeights = DEFAULT_SCORING_WEIGHTS,
        diversity: DiversityConstraint | None = None,
        max_reading_patterns: int = profiles.DEFAULT_MAX_READING_PATTERNS,
    ) -> None:
        profiles.validate_learning_rate(learning_rate)
        self._learning_rate = learning_rate
        self._default_weights = dict(default_weights) if default_weights else None
        self._scoring_weights = scoring_weights
        self._diversity = diversity or ShareCapConstraint()
        self._max_reading_patterns = max_reading_patterns

    @property
    def learning_rate(self) -> float:
        return self._learning_rate

    # ------------------------------------------------------------------
    # Profile learning
    # ------------------------------------------------------------------

    def create_profile(self, user_id: str) -> InterestProfile:
        """Return a fresh profile with the configured default weights."""
        return profiles.new_profile(user_id, self._default_weights)

    def apply_feedback(
        self,
        profile: InterestProfile,
        event: FeedbackEvent,
        learning_rate: float | None = None,
    ) -> InterestProfile:
        """Return *profile* updated with *event*.

        Args:
            profile: Current profile (not modified).
            event: The feedback to learn from.
            learning_rate: Overrides the engine default for this call.

        Raises:
            InvalidParameter: See :func:`personalization.profile.apply_feedback`.
        """
        rate = self._learning_rate if learning_rate is None else learning_rate
        return profiles.apply_feedback(profile, event, rate)

    def record_engagement(
        self, profile: InterestProfile, stats: BriefingStats
    ) -> InterestProfile:
        """Return *profile* with one finished briefing folded into its averages."""
        return profiles.record_engagement(profile, stats)

    def record_reading(
        self, profile: InterestProfile, pattern: ReadingPattern
    ) -> InterestProfile:
        """Return *profile* with a reading observation appended."""
        return profiles.record_reading(profile, pattern, self._max_reading_patterns)

    def block_source(self, profile: InterestProfile, source_id: str) -> InterestProfile:
        """Return *profile* with *source_id* on the block-list."""
        return profiles.block_source(profile, source_id)

    def unblock_source(self, profile: InterestProfile, source_id: str) -> InterestProfile:
        """Return *profile* with *source_id* off the block-list."""
        return profiles.unblock_source(profile, source_id)

    # ------------------------------------------------------------------
    # Profile views
    # ------------------------------------------------------------------

    def topic_affinity(self, profile: InterestProfile, topic: str) -> float:
        return profiles.topic_affinity(profile, topic)

    def preferred_topics(
        self, profile: InterestProfile, time_of_day: str | None = None
    ) -> list[str]:
        return profiles.preferred_topics(profile, time_of_day)

    def is_profile_sufficient(self, profile: InterestProfile) -> bool:
        return profiles.is_profile_sufficient(profile)

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def score(self, profile: InterestProfile, item: CandidateItem) -> float:
        """Return the blended score of *item* for *profile*."""
        return score(profile, item, self._scoring_weights)

    def select_top_n(
        self,
        profile: InterestProfile,
        candidates: list[CandidateItem],
        n: int,
        diversity: DiversityConstraint | None = None,
    ) -> list[CandidateItem]:
        """Return up to *n* candidates best-first under the diversity cap.

        Args:
            profile: The reader's profile.
            candidates: Items eligible for the briefing.
            n: Number of items wanted.
            diversity: Overrides the engine's cap policy for this call.
        """
        picks = select_top_n(
            profile,
            candidates,
            n,
            diversity=diversity or self._diversity,
            weights=self._scoring_weights,
        )
        logger.debug(
            "Selected %d of %d candidates for user %r",
            len(picks),
            len(candidates),
            profile.user_id,
        )
        return picks
