"""
Data models for storage layer.

Defines the usage ledger entities and the windows they are aggregated over.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict


class UsageType(Enum):
    """Metered resource recorded by a usage event."""
    TOKENS = "tokens"
    REQUESTS = "requests"


class UsageWindow(Enum):
    """Sliding windows usage can be aggregated over."""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def duration(self) -> timedelta:
        """Length of the window."""
        return _WINDOW_DURATIONS[self]


_WINDOW_DURATIONS = {
    UsageWindow.MINUTE: timedelta(minutes=1),
    UsageWindow.HOUR: timedelta(hours=1),
    UsageWindow.DAY: timedelta(days=1),
}

# Events older than the longest window are never queried again
MAX_RETENTION = max(_WINDOW_DURATIONS.values())


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one consumption of a provider's quota.

    Append-only events that make up the usage ledger.
    Once written, these records must never be modified.
    """
    timestamp: datetime
    provider_id: str
    type: UsageType
    count: int

    def __post_init__(self):
        """Validate count is a non-negative integer."""
        if isinstance(self.count, bool) or not isinstance(self.count, int):
            raise ValueError("count must be an integer")
        if self.count < 0:
            raise ValueError("count cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the event for the key/value store."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "provider_id": self.provider_id,
            "type": self.type.value,
            "count": self.count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageEvent":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            provider_id=data["provider_id"],
            type=UsageType(data["type"]),
            count=data["count"],
        )


@dataclass(frozen=True)
class UsageResult:
    """Aggregated usage of one provider within a window."""
    tokens: int = 0
    requests: int = 0
