"""
Sliding-window usage ledger.

Records how many tokens and requests each provider consumed and answers
windowed aggregate queries over that history.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from ..storage.models import (
    MAX_RETENTION,
    UsageEvent,
    UsageResult,
    UsageType,
    UsageWindow,
)
from ..storage.repository import KeyValueStore

logger = logging.getLogger(__name__)

USAGE_STORAGE_KEY = "quota_router.virtualprovider.usage.v1"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageTracker:
    """Consumption ledger shared by every caller in the process.

    The whole event list lives under a single key of the durable store and
    is read and written wholesale. Nothing is cached in memory, so every
    query reflects the store's current contents.

    Example:
        tracker = UsageTracker.initialize(SQLiteKeyValueStore("usage.db"))
        await tracker.consume("provider-1", "tokens", 100)
        usage = await tracker.get_usage("provider-1", "minute")
    """

    _instance: Optional["UsageTracker"] = None

    def __init__(
        self,
        store: KeyValueStore,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Create a tracker bound to ``store``.

        Most callers should go through :meth:`initialize` instead so the
        ledger is shared.

        Args:
            store: Durable key/value store holding the event list
            clock: Returns the current time; defaults to UTC now
        """
        self.store = store
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()

    @classmethod
    def initialize(
        cls,
        store: KeyValueStore,
        clock: Optional[Callable[[], datetime]] = None
    ) -> "UsageTracker":
        """Return the process-wide tracker, creating it on first call.

        Later calls return the existing instance and ignore their arguments.
        """
        if cls._instance is None:
            cls._instance = cls(store, clock=clock)
        return cls._instance

    async def consume(
        self,
        provider_id: str,
        type: Union[UsageType, str],
        count: int
    ) -> None:
        """Record a usage event.

        Events older than the longest window are pruned before the new one
        is appended, then the full list is persisted. The read-modify-write
        cycle is serialized so concurrent calls never drop each other's events.

        Args:
            provider_id: Identifier of the provider that was used
            type: "tokens" or "requests"
            count: Number of tokens or requests consumed

        Raises:
            ValueError: If count is negative, not an integer, or type is unknown
            Store errors: Propagated without modification
        """
        event = UsageEvent(
            timestamp=self._clock(),
            provider_id=provider_id,
            type=UsageType(type),
            count=count
        )

        async with self._lock:
            events = await self._get_pruned_events()
            events.append(event)

            await self.store.update(
                USAGE_STORAGE_KEY, [e.to_dict() for e in events]
            )
        logger.debug(
            "Recorded %d %s for provider %s", count, event.type.value, provider_id
        )

    async def get_usage(
        self,
        provider_id: str,
        window: Union[UsageWindow, str]
    ) -> UsageResult:
        """Total usage of a provider over a sliding window.

        An event exactly at the window's cutoff still counts.

        Args:
            provider_id: The provider to retrieve usage for
            window: "minute", "hour" or "day"

        Returns:
            UsageResult with summed tokens and requests
        """
        cutoff = self._clock() - UsageWindow(window).duration

        tokens = 0
        requests = 0
        for event in await self._load_events():
            if event.provider_id != provider_id or event.timestamp < cutoff:
                continue
            if event.type == UsageType.TOKENS:
                tokens += event.count
            elif event.type == UsageType.REQUESTS:
                requests += event.count

        return UsageResult(tokens=tokens, requests=requests)

    async def clear_all_usage_data(self) -> None:
        """Erase the entire ledger."""
        async with self._lock:
            await self.store.update(USAGE_STORAGE_KEY, None)
        logger.info("Cleared all usage data")

    async def _load_events(self) -> List[UsageEvent]:
        raw_events = await self.store.get(USAGE_STORAGE_KEY, [])
        return [UsageEvent.from_dict(raw) for raw in raw_events or []]

    async def _get_pruned_events(self) -> List[UsageEvent]:
        cutoff = self._clock() - MAX_RETENTION
        return [e for e in await self._load_events() if e.timestamp >= cutoff]
