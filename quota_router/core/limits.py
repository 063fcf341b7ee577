"""
Quota limit checks.

Decides whether a provider is still under the ceilings configured for it.

Check Order:
1. Minute window - Shortest window, most likely to be exhausted first
2. Hour window
3. Day window
"""

import logging
from typing import List, Optional, Tuple

from .usage_tracker import UsageTracker
from ..config.loader import ProviderLimits, VirtualProviderEntry
from ..storage.models import UsageWindow

logger = logging.getLogger(__name__)


def window_limits(
    limits: ProviderLimits
) -> List[Tuple[UsageWindow, Optional[int], Optional[int]]]:
    """Pair each window with its (requests, tokens) ceilings, in check order."""
    return [
        (UsageWindow.MINUTE, limits.requests_per_minute, limits.tokens_per_minute),
        (UsageWindow.HOUR, limits.requests_per_hour, limits.tokens_per_hour),
        (UsageWindow.DAY, limits.requests_per_day, limits.tokens_per_day),
    ]


async def under_limit(usage: UsageTracker, entry: VirtualProviderEntry) -> bool:
    """
    Check whether a provider is under all of its configured limits.

    A ceiling is reached as soon as usage equals it, not only once usage
    exceeds it. Windows without any configured ceiling are never queried.

    Args:
        usage: Tracker holding the consumption ledger
        entry: Fallback list entry carrying provider id and limits

    Returns:
        False if the entry has no provider id or any ceiling is reached,
        True otherwise (including when no limits are configured)
    """
    if not entry.provider_id:
        return False

    if entry.limits is None:
        return True

    for window, request_limit, token_limit in window_limits(entry.limits):
        if not request_limit and not token_limit:
            continue

        result = await usage.get_usage(entry.provider_id, window)

        if request_limit and result.requests >= request_limit:
            logger.debug(
                "Provider %s reached %d requests per %s",
                entry.provider_id, request_limit, window.value
            )
            return False

        if token_limit and result.tokens >= token_limit:
            logger.debug(
                "Provider %s reached %d tokens per %s",
                entry.provider_id, token_limit, window.value
            )
            return False

    return True
