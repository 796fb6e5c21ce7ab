"""
Unit tests for live_subtitle.llm_client module.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from live_subtitle.errors import ProviderHTTPError
from live_subtitle.llm_client import ChatCompletionClient


class FakeResponse:
    def __init__(self, status, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self):
        return self._payload

    async def text(self):
        return self._text


class TestChatCompletionClient:
    """Tests for ChatCompletionClient with a mocked session."""

    @pytest.fixture
    def client(self):
        return ChatCompletionClient("groq", "gsk")

    @pytest.mark.asyncio
    async def test_create_returns_content(self, client):
        session = MagicMock()
        session.post.return_value = FakeResponse(200, {"choices": [{"message": {"content": "안녕하세요"}}]})

        with patch.object(client, "_get_session", AsyncMock(return_value=session)):
            result = await client.create([], "llama-3.3-70b-versatile", 0.3, ["<|"])

        assert result == "안녕하세요"
        assert session.post.call_args.args[0] == "https://api.groq.com/openai/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_create_error_message(self, client):
        session = MagicMock()
        session.post.return_value = FakeResponse(401, text='{"error": {"message": "Invalid API Key"}}')

        with patch.object(client, "_get_session", AsyncMock(return_value=session)):
            with pytest.raises(ProviderHTTPError) as exc_info:
                await client.create([], "m", 0.3, ["<|"])

        assert exc_info.value.status == 401
        assert exc_info.value.message == "Invalid API Key"

    @pytest.mark.asyncio
    async def test_create_non_object_body(self, client):
        """A JSON body that is not an object is rejected with ValueError."""
        session = MagicMock()
        session.post.return_value = FakeResponse(200, ["unexpected"])

        with patch.object(client, "_get_session", AsyncMock(return_value=session)):
            with pytest.raises(ValueError):
                await client.create([], "m", 0.3, ["<|"])

    @pytest.mark.asyncio
    async def test_list_models_non_object_body(self, client):
        session = MagicMock()
        session.get.return_value = FakeResponse(200, "unexpected")

        with patch.object(client, "_get_session", AsyncMock(return_value=session)):
            with pytest.raises(ValueError):
                await client.list_models()
