"""
Provider handlers for Quota Router.

Concrete provider adapters and the virtual quota-fallback handler that
routes between them.
"""

from .base import ApiHandler, ModelDescriptor, NoActiveHandlerError
from .factory import build_api_handler
from .openai_handler import OpenAIHandler
from .settings import ProfileNotFoundError, ProviderSettingsManager
from .virtual_quota_fallback import HandlerConfig, VirtualQuotaFallbackHandler

__all__ = [
    "ApiHandler",
    "HandlerConfig",
    "ModelDescriptor",
    "NoActiveHandlerError",
    "OpenAIHandler",
    "ProfileNotFoundError",
    "ProviderSettingsManager",
    "VirtualQuotaFallbackHandler",
    "build_api_handler",
]
