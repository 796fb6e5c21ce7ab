"""
Unit tests for live_subtitle.remote module.
"""

from unittest.mock import MagicMock

import pytest

from live_subtitle.config import EngineConfig
from live_subtitle.errors import ProviderHTTPError
from live_subtitle.remote import normalize_language_name, transcribe, verify_connection


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


class TestLanguageNames:
    """Tests for normalize_language_name."""

    @pytest.mark.parametrize("name,code", [("japanese", "ja"), ("Korean", "ko"), ("english", "en")])
    def test_known_names(self, name, code):
        assert normalize_language_name(name) == code

    def test_missing_defaults_to_japanese(self):
        assert normalize_language_name(None) == "ja"

    def test_unknown_passed_through(self):
        assert normalize_language_name("klingon") == "klingon"


class TestRemoteCalls:
    """Tests for verify_connection and transcribe."""

    @pytest.mark.asyncio
    async def test_verify_success(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(200)

        assert await verify_connection(session, EngineConfig(provider="groq", api_key="gsk")) is True
        url = session.get.call_args.args[0]
        assert url == "https://api.groq.com/openai/v1/models"
        assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer gsk"}

    @pytest.mark.asyncio
    async def test_verify_rejected(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(401)
        assert await verify_connection(session, EngineConfig(provider="groq", api_key="bad")) is False

    @pytest.mark.asyncio
    async def test_transcribe_maps_language(self):
        session = MagicMock()
        session.post.return_value = FakeResponse(200, {"text": "こんにちは", "language": "japanese"})
        config = EngineConfig(provider="openai", api_key="sk", base_url="https://proxy/v1", model="whisper-1")

        result = await transcribe(session, config, b"RIFF")

        assert result.text == "こんにちは"
        assert result.language == "ja"
        assert session.post.call_args.args[0] == "https://proxy/v1/audio/transcriptions"

    @pytest.mark.asyncio
    async def test_transcribe_http_error(self):
        session = MagicMock()
        session.post.return_value = FakeResponse(500, text="server error")

        with pytest.raises(ProviderHTTPError) as exc_info:
            await transcribe(session, EngineConfig(provider="groq", api_key="gsk"), b"RIFF")

        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_transcribe_non_object_body(self):
        """A JSON body that is not an object is rejected with ValueError."""
        session = MagicMock()
        session.post.return_value = FakeResponse(200, ["こんにちは"])

        with pytest.raises(ValueError):
            await transcribe(session, EngineConfig(provider="groq", api_key="gsk"), b"RIFF")
