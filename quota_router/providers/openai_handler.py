"""
OpenAI-compatible provider handler.

Streams chat completions and reports token usage without modifying behavior.
"""

import math
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from .base import ContentBlock, Message, ModelDescriptor
from ..config.loader import ProviderProfile
from ..core.chunks import ApiStreamChunk, TextChunk, UsageChunk

# Rough average for English text; only used for advisory estimates
CHARS_PER_TOKEN = 4


class OpenAIHandler:
    """Handler for OpenAI and OpenAI-compatible chat completion endpoints.

    API and network failures are propagated unchanged to the caller.
    """

    def __init__(self, profile: ProviderProfile, client: Optional[AsyncOpenAI] = None):
        """Initialize the handler from a settings profile.

        Args:
            profile: Settings profile naming model, endpoint and key variable
            client: Preconfigured client (built from the profile if omitted)

        Raises:
            ValueError: If the profile has no model
        """
        if not profile.model or not profile.model.strip():
            raise ValueError("model is required and cannot be empty")

        self.profile = profile
        if client is None:
            api_key = os.environ.get(profile.api_key_env) if profile.api_key_env else None
            client = AsyncOpenAI(api_key=api_key, base_url=profile.base_url)
        self.client = client

    async def create_message(
        self,
        system_prompt: str,
        messages: List[Message],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[ApiStreamChunk]:
        """Stream a chat completion.

        Args:
            system_prompt: System instructions sent ahead of the messages
            messages: Conversation as role/content dictionaries
            metadata: Request metadata; not sent to the endpoint

        Yields:
            TextChunk for each content delta and a UsageChunk when the
            endpoint reports usage
        """
        stream = await self.client.chat.completions.create(
            model=self.profile.model,
            messages=[{"role": "system", "content": system_prompt}, *messages],
            stream=True,
            stream_options={"include_usage": True},
        )

        async for chunk in stream:
            for choice in chunk.choices or []:
                content = choice.delta.content if choice.delta else None
                if content:
                    yield TextChunk(text=content)

            usage = getattr(chunk, "usage", None)
            if usage:
                yield UsageChunk(
                    input_tokens=usage.prompt_tokens,
                    output_tokens=usage.completion_tokens,
                )

    async def count_tokens(self, content: List[ContentBlock]) -> int:
        """Estimate the token count of text content blocks."""
        characters = sum(
            len(block.get("text", ""))
            for block in content
            if block.get("type") == "text"
        )
        return math.ceil(characters / CHARS_PER_TOKEN)

    def get_model(self) -> ModelDescriptor:
        return ModelDescriptor(
            id=self.profile.model,
            info={"provider": self.profile.api_provider, "base_url": self.profile.base_url},
        )
