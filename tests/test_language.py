"""
Unit tests for live_subtitle.language module.
"""

from unittest.mock import patch

from langdetect import LangDetectException

from live_subtitle import language
from live_subtitle.language import UNDETERMINED, detect, is_language, resolve_language


class TestDetect:
    """Tests for detect function."""

    def test_short_text_is_undetermined(self):
        """Text under the minimum length is never classified."""
        assert detect("こんにちは") == UNDETERMINED
        assert detect("") == UNDETERMINED
        assert detect(None) == UNDETERMINED

    def test_japanese(self):
        assert detect("今日はとても良い天気ですね、散歩に行きましょう") == "ja"

    def test_korean(self):
        assert detect("안녕하세요 오늘 방송에 와주셔서 정말 감사합니다") == "ko"

    def test_english(self):
        assert detect("Thank you so much for coming to the stream today everyone") == "en"

    def test_deterministic(self):
        """Repeated detection of the same text gives the same answer."""
        text = "Thank you so much for coming to the stream today everyone"
        assert len({detect(text) for _ in range(5)}) == 1

    def test_chinese_variants_map_to_iso1(self):
        """zh-cn / zh-tw collapse to zh."""
        with patch.object(language, "_langdetect", return_value="zh-tw"):
            assert detect("這是一段足夠長的中文句子喔") == "zh"

    def test_unmapped_code_is_undetermined(self):
        """Languages outside the table resolve to 'und'."""
        with patch.object(language, "_langdetect", return_value="sw"):
            assert detect("habari za asubuhi rafiki yangu") == UNDETERMINED

    def test_detector_failure_is_undetermined(self):
        """Detector exceptions never propagate."""
        with patch.object(language, "_langdetect", side_effect=LangDetectException(0, "no features")):
            assert detect("1234567890 1234567890") == UNDETERMINED


class TestHelpers:
    """Tests for resolve_language and is_language."""

    def test_resolve_language_matches_detect(self):
        text = "今日はとても良い天気ですね、散歩に行きましょう"
        assert resolve_language(text) == detect(text)

    def test_is_language(self):
        text = "안녕하세요 오늘 방송에 와주셔서 정말 감사합니다"
        assert is_language(text, "ko") is True
        assert is_language(text, "ja") is False
