"""
Settings profile resolution.

Looks up the named provider profiles the fallback handler is configured with.
"""

from typing import Dict, Iterable

from ..config.loader import ProviderProfile


class ProfileNotFoundError(KeyError):
    """Raised when no settings profile exists for an id."""


class ProviderSettingsManager:
    """Resolves provider ids to settings profiles."""

    def __init__(self, profiles: Iterable[ProviderProfile] = ()):
        self._profiles: Dict[str, ProviderProfile] = {p.id: p for p in profiles}

    @classmethod
    def from_mapping(cls, profiles: Dict[str, ProviderProfile]) -> "ProviderSettingsManager":
        return cls(profiles.values())

    async def get_profile(self, profile_id: str) -> ProviderProfile:
        """Get the settings profile with the given id.

        Raises:
            ProfileNotFoundError: If the id is unknown
        """
        try:
            return self._profiles[profile_id]
        except KeyError:
            raise ProfileNotFoundError(f"Profile not found: {profile_id}") from None
