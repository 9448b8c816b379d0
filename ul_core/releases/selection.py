from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from typing import TypeVar

CHANCE_TOLERANCE = 0.1
FULL_CHANCE = 100.0

T = TypeVar("T")


def chances_are_balanced(total: float) -> bool:
    return abs(total - FULL_CHANCE) <= CHANCE_TOLERANCE


def even_split(count: int) -> list[float]:
    if count <= 0:
        return []
    return [FULL_CHANCE / count] * count


def normalize_chances(chances: Sequence[float]) -> list[float]:
    """Scale chances proportionally to sum to 100, or split evenly when they sum to 0."""

    total = sum(chances)
    if chances_are_balanced(total):
        return list(chances)
    if total == 0:
        return even_split(len(chances))
    return [chance / total * FULL_CHANCE for chance in chances]


def pick_weighted(
    candidates: Sequence[T],
    chance_of: Callable[[T], float],
    rng: random.Random | None = None,
) -> T:
    """Pick one candidate with probability proportional to its chance.

    Draws ``r`` in [0, 100) and returns the first candidate whose cumulative
    chance reaches ``r``. When the chances sum below the draw the first
    candidate is kept.
    """

    if not candidates:
        raise ValueError("No candidates to pick from")
    if len(candidates) == 1:
        return candidates[0]

    draw = (rng or random).random() * FULL_CHANCE
    cumulative = 0.0
    for candidate in candidates:
        cumulative += chance_of(candidate)
        if draw <= cumulative:
            return candidate
    return candidates[0]
