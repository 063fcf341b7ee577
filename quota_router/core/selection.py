"""
Provider selection policies.

Given the ordered fallback list, pick the provider the next request goes to.
Every policy shares the same fallback rules: with no provider under its
limits the first configured one is used, and an empty list selects nothing.
"""

import logging
import random
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from ..config.loader import SelectionPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def select_candidate(
    candidates: Sequence[T],
    is_under_limit: Callable[[T], Awaitable[bool]],
    policy: SelectionPolicy = SelectionPolicy.FIRST_UNDER_LIMIT,
    rng: Optional[random.Random] = None
) -> Optional[T]:
    """Select a candidate according to ``policy``.

    Args:
        candidates: Candidates in fallback priority order
        is_under_limit: Async predicate telling whether a candidate is usable
        policy: Selection policy to apply
        rng: Random source for RANDOM_UNDER_LIMIT

    Returns:
        The selected candidate, or None if there are no candidates
    """
    if not candidates:
        return None

    if policy == SelectionPolicy.FIRST_UNDER_LIMIT:
        for candidate in candidates:
            if await is_under_limit(candidate):
                return candidate
    elif policy == SelectionPolicy.RANDOM_UNDER_LIMIT:
        eligible: List[T] = []
        for candidate in candidates:
            if await is_under_limit(candidate):
                eligible.append(candidate)
        if eligible:
            return (rng or random).choice(eligible)
    else:
        raise ValueError(f"Unsupported selection policy: {policy}")

    logger.info("All providers are over their limits, falling back to the first one")
    return candidates[0]
