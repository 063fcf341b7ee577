"""
Virtual quota-fallback provider handler.

Routes every request to the first configured provider that is still under
its quota limits and records the consumption of each request.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from .base import ApiHandler, ContentBlock, Message, ModelDescriptor, NoActiveHandlerError
from .factory import build_api_handler
from .settings import ProviderSettingsManager
from ..config.loader import ProviderProfile, SelectionConfig, VirtualProviderEntry
from ..core.chunks import ApiStreamChunk
from ..core.limits import under_limit
from ..core.selection import select_candidate
from ..core.usage_tracker import UsageTracker
from ..storage.models import UsageType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerConfig:
    """A loaded provider together with the entry it was configured by."""
    handler: ApiHandler
    provider_id: str
    config: VirtualProviderEntry
    profile_name: Optional[str] = None


class VirtualQuotaFallbackHandler:
    """Handler that calls other provider handlers with quota-based fallback.

    Providers are tried in configured order. The first one under all of its
    limits handles the request; when every provider is over its limits the
    first configured provider is used anyway.

    Provider loading starts on construction when an event loop is running
    and is awaited by the first request. The active selection is recomputed
    before every request and is never persisted.

    Example:
        handler = VirtualQuotaFallbackHandler(config.providers, settings, tracker)
        async for chunk in handler.create_message(system_prompt, messages):
            ...
    """

    def __init__(
        self,
        providers: Sequence[VirtualProviderEntry],
        settings_manager: ProviderSettingsManager,
        usage: UsageTracker,
        handler_factory: Callable[[ProviderProfile], Optional[ApiHandler]] = build_api_handler,
        selection: Optional[SelectionConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the handler and schedule provider loading.

        Args:
            providers: Ordered fallback list
            settings_manager: Resolves provider ids to settings profiles
            usage: Tracker the consumption of every request is recorded in
            handler_factory: Builds a provider handler from a profile
            selection: Selection policy and loading concurrency
            rng: Random source for the random selection policy
        """
        self.providers = list(providers)
        self.settings_manager = settings_manager
        self.usage = usage
        self.handler_factory = handler_factory
        self.selection = selection or SelectionConfig()
        self._rng = rng

        self.handlers: List[HandlerConfig] = []
        self.active_handler: Optional[ApiHandler] = None
        self.active_handler_id: Optional[str] = None
        self._last_routed_id: Optional[str] = None

        self._loading: Optional[asyncio.Future] = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._loading = loop.create_task(self.load_configured_providers())

    async def ensure_loaded(self) -> None:
        """Wait for provider loading, starting it if it never ran."""
        if self._loading is None:
            self._loading = asyncio.ensure_future(self.load_configured_providers())
        loading = self._loading
        try:
            await loading
        except Exception:
            # a failed load is retried by the next caller
            if self._loading is loading:
                self._loading = None
            raise

    async def load_configured_providers(self) -> None:
        """Load the configured provider profiles and build their handlers.

        Providers are loaded concurrently, bounded by
        ``selection.max_concurrent_loads``. A provider whose profile or
        handler fails to load is logged and left out; the remaining ones
        keep their configured order. A failure to pick the initial
        selection is logged too, since every request selects again.
        """
        semaphore = asyncio.Semaphore(self.selection.max_concurrent_loads)

        async def load(index: int, entry: VirtualProviderEntry) -> Optional[HandlerConfig]:
            if not entry.provider_id or not entry.provider_name:
                logger.warning("Skipping provider %d: missing provider id or name", index + 1)
                return None

            async with semaphore:
                try:
                    profile = await self.settings_manager.get_profile(entry.provider_id)
                    api_handler = self.handler_factory(profile)
                except Exception as e:
                    logger.error(
                        "Failed to load provider %d (%s): %s",
                        index + 1, entry.provider_name, e
                    )
                    return None

            if api_handler is None:
                return None

            return HandlerConfig(
                handler=api_handler,
                provider_id=entry.provider_id,
                config=entry,
                profile_name=profile.name
            )

        results = await asyncio.gather(
            *(load(index, entry) for index, entry in enumerate(self.providers))
        )
        self.handlers = [result for result in results if result is not None]
        logger.debug(
            "Loaded %d of %d configured providers", len(self.handlers), len(self.providers)
        )

        try:
            await self.adjust_active_handler()
        except Exception as e:
            logger.error("Failed to select initial provider: %s", e)

    async def adjust_active_handler(self) -> Optional[HandlerConfig]:
        """Select the handler the next request goes to.

        Returns:
            The selected HandlerConfig, or None when no provider is loaded
        """
        selected = await select_candidate(
            self.handlers,
            lambda candidate: self.under_limit(candidate.config),
            policy=self.selection.policy,
            rng=self._rng
        )

        if selected is None:
            self.active_handler = None
            self.active_handler_id = None
        else:
            self.active_handler = selected.handler
            self.active_handler_id = selected.provider_id
        return selected

    async def under_limit(self, provider: VirtualProviderEntry) -> bool:
        """Check if a provider is under its configured limits."""
        return await under_limit(self.usage, provider)

    async def create_message(
        self,
        system_prompt: str,
        messages: List[Message],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[ApiStreamChunk]:
        """Stream a message from the provider selected for this request.

        One request is recorded against the selected provider up front and
        the tokens of every usage chunk as it arrives. Tracking failures are
        logged and never interrupt the stream.

        Raises:
            NoActiveHandlerError: If no provider could be selected
            Provider errors: Propagated without modification
        """
        await self.ensure_loaded()
        selected = await self.adjust_active_handler()
        if selected is None:
            raise NoActiveHandlerError()

        if selected.provider_id != self._last_routed_id:
            logger.info(
                "Routing requests to provider %s (%s)",
                selected.provider_id, selected.profile_name or selected.config.provider_name
            )
            self._last_routed_id = selected.provider_id

        await self._track(selected.provider_id, UsageType.REQUESTS, 1)

        stream = selected.handler.create_message(system_prompt, messages, metadata)
        async for chunk in stream:
            if getattr(chunk, "type", None) == "usage":
                total_tokens = (
                    (getattr(chunk, "input_tokens", 0) or 0)
                    + (getattr(chunk, "output_tokens", 0) or 0)
                )
                if total_tokens > 0:
                    await self._track(selected.provider_id, UsageType.TOKENS, total_tokens)
            yield chunk

    async def count_tokens(self, content: List[ContentBlock]) -> int:
        """Count tokens with the active provider; 0 when none is active."""
        await self.ensure_loaded()
        if self.active_handler is None:
            return 0
        return await self.active_handler.count_tokens(content)

    def get_model(self) -> ModelDescriptor:
        """Describe the active provider's model.

        Raises:
            NoActiveHandlerError: If no provider is active
        """
        if self.active_handler is None:
            raise NoActiveHandlerError()
        return self.active_handler.get_model()

    async def _track(self, provider_id: str, usage_type: UsageType, count: int) -> None:
        try:
            await self.usage.consume(provider_id, usage_type, count)
        except Exception:
            logger.warning(
                "Failed to track %s consumption for provider %s",
                usage_type.value, provider_id, exc_info=True
            )
