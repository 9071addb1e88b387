"""Blended relevance scoring of candidate items against an interest profile."""

from __future__ import annotations

import math
from dataclasses import astuple, dataclass

import numpy as np

from personalization.errors import InvalidParameter
from personalization.models import CandidateItem, InterestProfile
from personalization.profile import source_affinity


@dataclass(frozen=True)
class ScoringWeights:
    """Coefficients of the blended score.

    The feature vector is ``[topic, quality, freshness, relevance, source]``
    and the score is its dot product with these coefficients.
    """

    topic: float = 0.40
    quality: float = 0.25
    freshness: float = 0.15
    relevance: float = 0.15
    source: float = 0.05

    def __post_init__(self) -> None:
        for value in astuple(self):
            if not math.isfinite(value) or value < 0:
                raise InvalidParameter(f"Scoring coefficients must be non-negative, got {value!r}")

    def as_vector(self) -> np.ndarray:
        return np.array(astuple(self), dtype=np.float64)


DEFAULT_SCORING_WEIGHTS = ScoringWeights()


def feature_vector(profile: InterestProfile, item: CandidateItem) -> np.ndarray:
    """Return the item's features as seen by *profile*, in coefficient order."""
    return np.array(
        [
            profile.topic_weights.get(item.category, 0.0),
            item.quality_score,
            item.freshness_score,
            item.relevance_score,
            source_affinity(profile, item.source_id),
        ],
        dtype=np.float64,
    )


def score(
    profile: InterestProfile,
    item: CandidateItem,
    weights: ScoringWeights = DEFAULT_SCORING_WEIGHTS,
) -> float:
    """Return how well *item* suits *profile*.

    Items from a blocked source always score exactly ``0.0``. The result is
    otherwise unbounded: it is only meaningful relative to other items scored
    against the same profile.
    """
    if item.source_id in profile.source_affinity.blocked:
        return 0.0
    return float(np.dot(weights.as_vector(), feature_vector(profile, item)))


def score_all(
    profile: InterestProfile,
    items: list[CandidateItem],
    weights: ScoringWeights = DEFAULT_SCORING_WEIGHTS,
) -> np.ndarray:
    """Score every item in *items*; returns a float array in input order."""
    if not items:
        return np.zeros(0, dtype=np.float64)
    features = np.vstack([feature_vector(profile, item) for item in items])
    scores = features @ weights.as_vector()
    blocked = np.array(
        [item.source_id in profile.source_affinity.blocked for item in items], dtype=bool
    )
    scores[blocked] = 0.0
    return scores
