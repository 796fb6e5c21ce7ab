"""
Unit tests for live_subtitle.prompts module.

Covers translation direction resolution, glossary injection and template rendering.
"""

import pytest

from live_subtitle.config import GlossaryEntry
from live_subtitle.prompts import (
    BARE_FALLBACK_PROMPT,
    EN_INSTRUCTION,
    FALLBACK_INSTRUCTION,
    GLOSSARY_HEADER,
    JA_INSTRUCTION,
    KO_INSTRUCTION,
    PromptBuilder,
    build_glossary_block,
    get_prompt,
    normalize_source,
    render_template,
)


class TestGetPrompt:
    """Tests for get_prompt direction policy."""

    @pytest.mark.parametrize("target", ["ja-ko", "auto"])
    def test_ja_ko_from_japanese(self, target):
        """Japanese source is translated into Korean."""
        result = get_prompt(target, "ja")
        assert result.target_lang == "Korean"
        assert result.instruction == KO_INSTRUCTION

    @pytest.mark.parametrize("detected", ["ko", None, "und", "en"])
    def test_ja_ko_otherwise_japanese(self, detected):
        """Anything not Japanese, including unknown, goes to Japanese."""
        result = get_prompt("ja-ko", detected)
        assert result.target_lang == "Japanese"
        assert result.instruction == JA_INSTRUCTION

    def test_ja_en(self):
        assert get_prompt("ja-en", "ja").target_lang == "English"
        assert get_prompt("ja-en", "en").target_lang == "Japanese"
        assert get_prompt("ja-en", None).target_lang == "Japanese"

    def test_ko_en(self):
        assert get_prompt("ko-en", "ko").target_lang == "English"
        assert get_prompt("ko-en", "en").target_lang == "Korean"
        assert get_prompt("ko-en", None).target_lang == "Korean"

    @pytest.mark.parametrize("target,expected", [("ja", "Japanese"), ("ko", "Korean"), ("en", "English")])
    def test_forced_target_ignores_detection(self, target, expected):
        """Single-language targets ignore the detected source."""
        for detected in ("ja", "ko", "en", None):
            assert get_prompt(target, detected).target_lang == expected

    def test_forced_english_uses_english_instruction(self):
        assert get_prompt("en", "ja").instruction == EN_INSTRUCTION

    def test_unknown_configuration_falls_back(self):
        result = get_prompt("xx-yy", "ja")
        assert result.target_lang == "Japanese"
        assert result.instruction == FALLBACK_INSTRUCTION


class TestNormalizeSource:
    """Tests for normalize_source."""

    @pytest.mark.parametrize("value", [None, "", "und", "auto", "unknown"])
    def test_unknown_aliases(self, value):
        assert normalize_source(value) == "Unknown"

    def test_known_code_kept(self):
        assert normalize_source("ko") == "ko"


class TestGlossaryBlock:
    """Tests for build_glossary_block."""

    @pytest.fixture
    def glossary(self):
        return (
            GlossaryEntry(id="1", source_text="Hello", source_lang="en", target_text="こんにちは", target_lang="ja", bidirectional=True),
            GlossaryEntry(id="2", source_text="山田", source_lang="ja", target_text="야마다", target_lang="ko"),
        )

    def test_forward_match(self, glossary):
        block = build_glossary_block(glossary, "en", "ja")
        assert block == GLOSSARY_HEADER + "\n- Hello: こんにちは"

    def test_bidirectional_reverse_match(self, glossary):
        """A bidirectional entry also applies in the reverse direction."""
        block = build_glossary_block(glossary, "ja", "en")
        assert "- こんにちは: Hello" in block

    def test_one_way_entry_not_reversed(self, glossary):
        assert build_glossary_block(glossary, "ko", "ja") == ""

    def test_no_match_is_empty(self, glossary):
        """No header is produced when nothing applies."""
        assert build_glossary_block(glossary, "en", "ko") == ""
        assert build_glossary_block((), "en", "ja") == ""

    def test_unknown_source_matches_any_source(self, glossary):
        block = build_glossary_block(glossary, "Unknown", "ja")
        assert "- Hello: こんにちは" in block

    def test_duplicate_lines_removed(self):
        glossary = (
            GlossaryEntry(id="1", source_text="Hi", source_lang="en", target_text="やあ", target_lang="ja"),
            GlossaryEntry(id="2", source_text="Hi", source_lang="en", target_text="やあ", target_lang="ja"),
        )
        block = build_glossary_block(glossary, "en", "ja")
        assert block.count("- Hi: やあ") == 1


class TestRenderTemplate:
    """Tests for render_template."""

    def test_placeholders_substituted(self):
        text = render_template("To {{TARGET_LANG}} from {{ SOURCE_LANG }}", {"TARGET_LANG": "Korean", "SOURCE_LANG": "ja"})
        assert text == "To Korean from ja"

    def test_unknown_placeholder_kept(self):
        assert render_template("{{OTHER}}", {}) == "{{OTHER}}"

    def test_blank_lines_collapsed(self):
        assert render_template("a\n\n{{GLOSSARY}}\n\nb", {"GLOSSARY": ""}) == "a\n\nb"


class TestPromptBuilder:
    """Tests for PromptBuilder."""

    def test_default_template_when_file_missing(self, tmp_path):
        builder = PromptBuilder(str(tmp_path / "missing.txt"))
        result = builder.build("ja-ko", "ja", ())
        assert result.target_lang == "Korean"
        assert KO_INSTRUCTION in result.instruction
        assert "{{" not in result.instruction
        assert GLOSSARY_HEADER not in result.instruction

    def test_template_file_loaded(self, tmp_path):
        path = tmp_path / "system_prompt.txt"
        path.write_text("Translate to {{TARGET_LANG}}.\n{{GLOSSARY}}", encoding="utf-8")
        glossary = (GlossaryEntry(id="1", source_text="山田", source_lang="ja", target_text="야마다", target_lang="ko"),)

        result = PromptBuilder(str(path)).build("ja-ko", "ja", glossary)

        assert result.instruction == "Translate to Korean.\n" + GLOSSARY_HEADER + "\n- 山田: 야마다"

    def test_reload_rereads_file(self, tmp_path):
        path = tmp_path / "system_prompt.txt"
        path.write_text("first {{TARGET_LANG}}", encoding="utf-8")
        builder = PromptBuilder(str(path))
        assert builder.build("ko", None, ()).instruction == "first Korean"

        path.write_text("second {{TARGET_LANG}}", encoding="utf-8")
        assert builder.build("ko", None, ()).instruction == "first Korean"
        builder.reload()
        assert builder.build("ko", None, ()).instruction == "second Korean"

    def test_bare_prompt_when_render_fails(self, tmp_path, monkeypatch):
        from live_subtitle import prompts

        def broken(template, values):
            raise TypeError("bad template")

        monkeypatch.setattr(prompts, "render_template", broken)
        result = PromptBuilder(str(tmp_path / "missing.txt")).build("ja", None, ())
        assert result.instruction == BARE_FALLBACK_PROMPT
        assert result.target_lang == "Japanese"
