"""
Provider handler factory.
"""

from typing import Callable, Dict

from .base import ApiHandler
from .openai_handler import OpenAIHandler
from ..config.loader import ProviderProfile

HANDLER_BUILDERS: Dict[str, Callable[[ProviderProfile], ApiHandler]] = {
    "openai": OpenAIHandler,
}


def build_api_handler(profile: ProviderProfile) -> ApiHandler:
    """Build the request handler for a settings profile.

    Args:
        profile: Resolved settings profile

    Returns:
        Handler implementing the ApiHandler interface

    Raises:
        ValueError: If the profile's api_provider is not supported
    """
    builder = HANDLER_BUILDERS.get(profile.api_provider)
    if builder is None:
        supported = sorted(HANDLER_BUILDERS)
        raise ValueError(
            f"Unsupported api_provider '{profile.api_provider}' in profile {profile.id}; "
            f"supported: {supported}"
        )
    return builder(profile)
