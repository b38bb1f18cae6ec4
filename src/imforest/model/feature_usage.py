"""Feature-type usage across a trained forest."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Protocol


class CountsFeatures(Protocol):
    def count_features(self) -> dict[str, int]: ...


def count_features(trees: Iterable[CountsFeatures]) -> dict[str, int]:
    """Sum each tree's feature-type counts.

    Trees without split nodes contribute nothing; an empty forest yields ``{}``.
    """
    total: Counter[str] = Counter()
    for tree in trees:
        total.update(tree.count_features())
    return dict(total)


__all__ = ["count_features"]
