"""
Unit tests for concrete provider handlers, the factory and profile resolution.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest

from quota_router.config.loader import ProviderProfile
from quota_router.core.chunks import TextChunk, UsageChunk
from quota_router.providers.base import ModelDescriptor
from quota_router.providers.factory import build_api_handler
from quota_router.providers.openai_handler import OpenAIHandler
from quota_router.providers.settings import ProfileNotFoundError, ProviderSettingsManager

PROFILE = ProviderProfile(
    id="p1",
    name="primary-profile",
    api_provider="openai",
    model="gpt-4o-mini",
    api_key_env="TEST_OPENAI_KEY",
    base_url="https://example.invalid/v1",
)


def completion_chunk(content=None, usage=None):
    """Streaming chunk shaped like the OpenAI SDK's ChatCompletionChunk."""
    choices = []
    if content is not None:
        choices.append(SimpleNamespace(delta=SimpleNamespace(content=content)))
    return SimpleNamespace(choices=choices, usage=usage)


class FakeStream:
    """Async iterator over prepared chunks."""

    def __init__(self, chunks):
        self._chunks = list(chunks)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)


def make_client(chunks):
    client = Mock()
    client.chat.completions.create = AsyncMock(return_value=FakeStream(chunks))
    return client


class TestOpenAIHandler:
    """Test OpenAI-compatible handler."""

    @patch('quota_router.providers.openai_handler.AsyncOpenAI')
    def test_init_builds_client_from_profile(self, mock_openai_class, monkeypatch):
        monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test")

        handler = OpenAIHandler(PROFILE)

        mock_openai_class.assert_called_once_with(
            api_key="sk-test", base_url="https://example.invalid/v1"
        )
        assert handler.client is mock_openai_class.return_value

    def test_init_missing_model(self):
        profile = ProviderProfile(id="p1", name="n", api_provider="openai", model=" ")
        with pytest.raises(ValueError, match="model is required"):
            OpenAIHandler(profile, client=Mock())

    @pytest.mark.asyncio
    async def test_create_message_streams_text_and_usage(self):
        client = make_client([
            completion_chunk("Hel"),
            completion_chunk("lo"),
            completion_chunk(usage=SimpleNamespace(prompt_tokens=10, completion_tokens=20)),
        ])
        handler = OpenAIHandler(PROFILE, client=client)
        messages = [{"role": "user", "content": "Hi"}]

        chunks = [c async for c in handler.create_message("Be brief", messages, {"task_id": "t1"})]

        assert chunks == [
            TextChunk(text="Hel"),
            TextChunk(text="lo"),
            UsageChunk(input_tokens=10, output_tokens=20),
        ]
        client.chat.completions.create.assert_awaited_once_with(
            model="gpt-4o-mini",
            messages=[
                {"role": "system", "content": "Be brief"},
                {"role": "user", "content": "Hi"},
            ],
            stream=True,
            stream_options={"include_usage": True},
        )

    @pytest.mark.asyncio
    async def test_empty_deltas_are_skipped(self):
        client = make_client([completion_chunk(""), completion_chunk("ok")])
        handler = OpenAIHandler(PROFILE, client=client)

        chunks = [c async for c in handler.create_message("", [])]

        assert chunks == [TextChunk(text="ok")]

    @pytest.mark.asyncio
    async def test_api_errors_propagate(self):
        client = Mock()
        client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))
        handler = OpenAIHandler(PROFILE, client=client)

        with pytest.raises(RuntimeError, match="rate limited"):
            async for _ in handler.create_message("", []):
                pass

    @pytest.mark.asyncio
    async def test_count_tokens_estimates_text_blocks(self):
        handler = OpenAIHandler(PROFILE, client=Mock())

        count = await handler.count_tokens([
            {"type": "text", "text": "abcdefgh"},
            {"type": "image", "source": {}},
            {"type": "text", "text": "x"},
        ])

        assert count == 3

    def test_get_model(self):
        handler = OpenAIHandler(PROFILE, client=Mock())
        model = handler.get_model()

        assert isinstance(model, ModelDescriptor)
        assert model.id == "gpt-4o-mini"
        assert model.info["provider"] == "openai"


class TestBuildApiHandler:
    """Test the provider handler factory."""

    @patch('quota_router.providers.openai_handler.AsyncOpenAI')
    def test_builds_openai_handler(self, mock_openai_class):
        handler = build_api_handler(PROFILE)
        assert isinstance(handler, OpenAIHandler)
        assert handler.profile is PROFILE

    def test_unsupported_provider(self):
        profile = ProviderProfile(id="x", name="x", api_provider="carrier-pigeon", model="m")
        with pytest.raises(ValueError, match="Unsupported api_provider 'carrier-pigeon'"):
            build_api_handler(profile)


class TestProviderSettingsManager:
    """Test settings profile resolution."""

    @pytest.mark.asyncio
    async def test_get_profile(self):
        manager = ProviderSettingsManager.from_mapping({"p1": PROFILE})
        assert await manager.get_profile("p1") is PROFILE

    @pytest.mark.asyncio
    async def test_unknown_profile(self):
        manager = ProviderSettingsManager([PROFILE])
        with pytest.raises(ProfileNotFoundError, match="Profile not found: missing"):
            await manager.get_profile("missing")
