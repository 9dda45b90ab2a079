"""Random winner selection without replacement."""

from __future__ import annotations

import random
import secrets
from typing import Iterable, List, Optional


def select_winners(
    pool: Iterable[int], count: int, *, rng: Optional[random.Random] = None
) -> List[int]:
    """Return ``min(count, len(pool))`` distinct members of ``pool``.

    The pool is shuffled with an unbiased Fisher-Yates pass and the first
    ``count`` members are taken. Duplicate IDs in ``pool`` are collapsed.
    """
    if count < 0:
        raise ValueError("count must be zero or greater")
    candidates = list(dict.fromkeys(pool))
    if not candidates or count == 0:
        return []
    generator = rng or secrets.SystemRandom()
    for i in range(len(candidates) - 1, 0, -1):
        j = generator.randrange(i + 1)
        candidates[i], candidates[j] = candidates[j], candidates[i]
    return candidates[: min(count, len(candidates))]
