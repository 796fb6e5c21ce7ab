"""
Unit tests for live_subtitle.text_utils module.

Tests noise / hallucination filtering applied before translation.
"""

import pytest

from live_subtitle.text_utils import is_noise


class TestIsNoise:
    """Tests for is_noise function."""

    @pytest.mark.parametrize("text", [
        "[BLANK_AUDIO]",
        "[MUSIC]",
        "(音楽)",
        "（笑）",
        "...",
        "？！",
        "www",
        "ｗｗｗ",
        "a",
        "*click*",
        "「」",
    ])
    def test_noise_is_filtered(self, text):
        """Known hallucination shapes are noise."""
        assert is_noise(text) is True

    @pytest.mark.parametrize("text", [None, "", "   ", "\n\t"])
    def test_empty_is_noise(self, text):
        """None and blank strings are noise."""
        assert is_noise(text) is True

    @pytest.mark.parametrize("text", [
        "Hello, how are you?",
        "こんにちは、元気ですか？",
        "안녕하세요",
        "OK",
        "wow",
    ])
    def test_speech_is_kept(self, text):
        """Real utterances pass through."""
        assert is_noise(text) is False

    def test_surrounding_whitespace_ignored(self):
        """Patterns match against the trimmed text."""
        assert is_noise("  [BLANK_AUDIO]  ") is True
