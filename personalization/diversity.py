"""Diversity constraints limiting how many items one category may contribute."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

from personalization.errors import InvalidParameter


class DiversityConstraint(ABC):
    """Abstract base class for per-category caps applied during selection.

    :func:`~personalization.selection.select_top_n` asks the constraint for a
    single cap per selection pass and admits items in rank order until a
    category reaches it.
    """

    @abstractmethod
    def category_cap(self, n: int, n_categories: int) -> int:
        """Return the most items any single category may contribute.

        Args:
            n: Number of items being selected. Always positive.
            n_categories: Distinct categories among the candidates. Always
                positive.
        """


class ShareCapConstraint(DiversityConstraint):
    """Caps each category at its fair share of *n* plus a fixed allowance.

    The cap is ``ceil(n / n_categories) + extra``.

    Args:
        extra: Items a category may take beyond its even share.
    """

    def __init__(self, extra: int = 1) -> None:
        if extra < 0:
            raise InvalidParameter(f"extra must be non-negative, got {extra!r}")
        self._extra = extra

    def category_cap(self, n: int, n_categories: int) -> int:
        return math.ceil(n / n_categories) + self._extra


class NoDiversityConstraint(DiversityConstraint):
    """Pure ranking: any category may fill every slot."""

    def category_cap(self, n: int, n_categories: int) -> int:
        return n
