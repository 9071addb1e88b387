"""Top-N candidate selection with a per-category diversity cap."""

from __future__ import annotations

import logging

import numpy as np

from personalization.diversity import DiversityConstraint, ShareCapConstraint
from personalization.models import CandidateItem, InterestProfile
from personalization.scoring import DEFAULT_SCORING_WEIGHTS, ScoringWeights, score_all

logger = logging.getLogger(__name__)

DEFAULT_DIVERSITY = ShareCapConstraint()


def rank(
    profile: InterestProfile,
    candidates: list[CandidateItem],
    weights: ScoringWeights = DEFAULT_SCORING_WEIGHTS,
) -> list[int]:
    """Return candidate indices best-first.

    Ordered by score descending, then freshness descending, then input
    position, so equal inputs always produce the same order.
    """
    if not candidates:
        return []
    scores = score_all(profile, candidates, weights)
    freshness = np.array([c.freshness_score for c in candidates], dtype=np.float64)
    positions = np.arange(len(candidates))
    # lexsort sorts by the last key first.
    order = np.lexsort((positions, -freshness, -scores))
    return [int(i) for i in order]


def select_top_n(
    profile: InterestProfile,
    candidates: list[CandidateItem],
    n: int,
    diversity: DiversityConstraint = DEFAULT_DIVERSITY,
    weights: ScoringWeights = DEFAULT_SCORING_WEIGHTS,
) -> list[CandidateItem]:
    """Pick up to *n* candidates for a briefing, best-first.

    Items are admitted in rank order while their category is under the cap
    given by *diversity*. If that leaves fewer than *n* items, the best
    remaining items are added regardless of category.

    Args:
        profile: The reader's profile (not modified).
        candidates: Items eligible for this briefing.
        n: Number of items wanted.
        diversity: Per-category cap policy.
        weights: Scoring coefficients.

    Returns:
        At most *n* items in rank order. Empty if there are no candidates
        or *n* is not positive.
    """
    if n <= 0 or not candidates:
        return []

    order = rank(profile, candidates, weights)
    n_categories = len({c.category for c in candidates})
    cap = diversity.category_cap(n, n_categories)

    chosen: list[int] = []
    skipped: list[int] = []
    per_category: dict[str, int] = {}
    for index in order:
        if len(chosen) >= n:
            break
        category = candidates[index].category
        if per_category.get(category, 0) < cap:
            chosen.append(index)
            per_category[category] = per_category.get(category, 0) + 1
        else:
            skipped.append(index)

    # Backfill from capped-out items, still best-first.
    if len(chosen) < n and skipped:
        logger.debug(
            "Diversity cap %d left %d/%d slots for user %r; backfilling",
            cap,
            len(chosen),
            n,
            profile.user_id,
        )
        chosen.extend(skipped[: n - len(chosen)])

    position = {index: pos for pos, index in enumerate(order)}
    chosen.sort(key=position.__getitem__)
    return [candidates[i] for i in chosen]
