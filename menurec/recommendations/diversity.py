from __future__ import annotations

import math
from typing import Callable, Sequence, TypeVar

T = TypeVar("T")


def category_cap(limit: int, diversity_factor: float, n_categories: int) -> int:
    """Largest number of results one category may take.

    A factor of 0 allows the whole result to come from one category; a
    factor of 1 limits each category to its proportional share, rounded up.
    """
    if limit <= 0:
        return 0
    if diversity_factor <= 0 or n_categories <= 1:
        return limit
    return max(
        math.ceil(limit * (1.0 - diversity_factor)),
        math.ceil(limit / n_categories),
    )


def diversify(
    ranked: Sequence[T],
    limit: int,
    diversity_factor: float,
    category_of: Callable[[T], str | None],
) -> list[T]:
    """Greedy re-rank of ``ranked`` (best first) under a per-category cap.

    Items over their category's cap are skipped and later items from other
    categories take their slots.  Relative order is preserved.  The result
    may be shorter than ``limit`` when the cap cannot be satisfied.
    """
    if diversity_factor <= 0:
        return list(ranked[:limit])

    n_categories = len({category_of(item) for item in ranked})
    cap = category_cap(limit, diversity_factor, n_categories)

    counts: dict[str | None, int] = {}
    picked: list[T] = []
    for item in ranked:
        if len(picked) >= limit:
            break
        category = category_of(item)
        if counts.get(category, 0) >= cap:
            continue
        counts[category] = counts.get(category, 0) + 1
        picked.append(item)
    return picked
