"""
提示詞模組 - 系統提示詞建構
🎯 翻譯方向解析 + 各目標語言的嚴格指令 + 使用者詞彙表
"""
import os
import re
import sys
from dataclasses import dataclass
from typing import Iterable, Optional

from .config import SYSTEM_PROMPT_PATH, GlossaryEntry

UNKNOWN_SOURCE: str = "Unknown"
_UNKNOWN_ALIASES = frozenset({None, '', 'und', 'unknown', 'Unknown', 'auto'})

LANGUAGE_NAME_TO_CODE = {
    'Japanese': 'ja',
    'Korean': 'ko',
    'English': 'en',
}

# ============================================================
# 📜 指令模板（資料，非邏輯）
# ============================================================

JA_INSTRUCTION = """Translate the input text into **JAPANESE**.
STRICT CONFIG:
1. **OUTPUT SCRIPT**: **JAPANESE ONLY** (Kanji/Kana).
2. **NO COPYING**: NEVER copy the source Korean text. If meanings are unclear, guess from context.
3. **FORBIDDEN**: ABSOLUTELY NO HANGUL CHARACTERS.
4. **TRANSLITERATION**: If a word is a proper noun (Name, Place) or unknown, **WRITE ITS SOUND IN KATAKANA**.
   - "김철수" -> "キム・チョルス"
   - "서울" -> "ソウル"
5. **HONORIFICS**: Translate "님", "씨" to "さん". NEVER leave "님" in the output."""

KO_INSTRUCTION = """Translate the input Japanese text into **KOREAN**.
STRICT CONFIG:
1. **OUTPUT SCRIPT**: **HANGUL ONLY**.
2. **FORBIDDEN**: ABSOLUTELY NO JAPANESE CHARACTERS (Kanji, Hiragana, Katakana).
3. **TRANSLITERATION**: If a word is a proper noun (Name, Place) or unknown, **WRITE ITS SOUND IN HANGUL**.
   - "山田太郎" -> "야마다 타로"
   - "東京" -> "도쿄"
4. **HONORIFICS**: Translate "さん", "様" to "님" or "씨". NEVER leave Japanese honorifics in the output.
5. **FILLERS**: Remove Japanese fillers ("あの", "えっと") or translate to Korean fillers ("저", "음")."""

KO_FROM_EN_INSTRUCTION = '''Translate the input text into **KOREAN**.
STRICT CONFIG:
1. **OUTPUT SCRIPT**: **HANGUL ONLY**.
2. **FORBIDDEN**: ABSOLUTELY NO ALPHABET CHARACTERS.
3. **TRANSLITERATION**: If a word is a proper noun (Name, Place) or unknown, **WRITE ITS SOUND IN HANGUL**.
   - "Smith" -> "스미스"
   - "iPhone" -> "아이폰"'''

EN_INSTRUCTION = """Translate the input text into **ENGLISH**.
STRICT CONFIG:
1. **OUTPUT SCRIPT**: **LATIN ALPHABET ONLY**. No Kanji, Kana or Hangul in the output.
2. **TRANSLITERATION**: If a word is a proper noun (Name, Place) or unknown, **WRITE ITS SOUND IN ROMAN LETTERS**.
   - "山田太郎" -> "Yamada Taro"
   - "김철수" -> "Kim Cheol-su"
3. **HONORIFICS**: Keep "-san" / "-nim" only when they are part of a name; otherwise drop them."""

JA_FORCED_INSTRUCTION = (
    "Translate the input text into **JAPANESE**.\n"
    "STRICT RULE: The output must be 100% Japanese. If proper noun, TRANSLITERATE to Katakana. Do NOT use Hangul."
)

KO_FORCED_INSTRUCTION = (
    "Translate the input text into **KOREAN**.\n"
    "STRICT RULE: The output must be 100% Korean. If proper noun, TRANSLITERATE to Hangul. ABSOLUTELY NO KANJI/KANA."
)

JA_FROM_EN_INSTRUCTION = (
    "Translate the input text into **JAPANESE**.\n"
    "STRICT RULE: Output MUST be Japanese. If proper noun, TRANSLITERATE to Katakana."
)

FALLBACK_INSTRUCTION = (
    "Translate the input text into **JAPANESE**.\n"
    "STRICT RULE: NO COPYING source text. Output MUST be 100% Japanese. If unclear, guess or exclude it."
)

GLOSSARY_HEADER = "Use the following term definitions strictly:"

DEFAULT_TEMPLATE = """You are a professional real-time subtitle translator for a live stream.
Source language: {{SOURCE_LANG}}
Target language: {{TARGET_LANG}}

{{INSTRUCTION}}

{{GLOSSARY}}

Output ONLY the translated text. No explanations, no notes, no quotes."""

BARE_FALLBACK_PROMPT = "You are a professional translator."

RE_PLACEHOLDER = re.compile(r'\{\{\s*([A-Z_]+)\s*\}\}')
RE_EXCESS_BLANK_LINES = re.compile(r'\n{3,}')


@dataclass(frozen=True)
class PromptResult:
    instruction: str
    target_lang: str


# 雙向組合：(語言A, 語言B) → 偵測到 A 時翻成 B，否則（含未知）翻成預設方向
_BIDIRECTIONAL_POLICIES = {
    'ja-ko': ('ja', PromptResult(KO_INSTRUCTION, 'Korean'), PromptResult(JA_INSTRUCTION, 'Japanese')),
    'ja-en': ('ja', PromptResult(EN_INSTRUCTION, 'English'), PromptResult(JA_FROM_EN_INSTRUCTION, 'Japanese')),
    'ko-en': ('ko', PromptResult(EN_INSTRUCTION, 'English'), PromptResult(KO_FROM_EN_INSTRUCTION, 'Korean')),
}
_BIDIRECTIONAL_POLICIES['auto'] = _BIDIRECTIONAL_POLICIES['ja-ko']

_FORCED_POLICIES = {
    'ja': PromptResult(JA_FORCED_INSTRUCTION, 'Japanese'),
    'ko': PromptResult(KO_FORCED_INSTRUCTION, 'Korean'),
    'en': PromptResult(EN_INSTRUCTION, 'English'),
}


def normalize_source(detected_language: Optional[str]) -> str:
    """未偵測到的來源語言統一為 'Unknown'"""
    if detected_language in _UNKNOWN_ALIASES:
        return UNKNOWN_SOURCE
    return detected_language


def get_prompt(configured_target: str, detected_language: Optional[str] = None) -> PromptResult:
    """依設定的翻譯方向與偵測到的來源語言，決定目標語言與指令"""
    forced = _FORCED_POLICIES.get(configured_target)
    if forced:
        return forced

    policy = _BIDIRECTIONAL_POLICIES.get(configured_target)
    if policy is None:
        return PromptResult(FALLBACK_INSTRUCTION, 'Japanese')

    first_lang, when_first, default = policy
    if normalize_source(detected_language) == first_lang:
        return when_first
    return default


def build_glossary_block(glossary: Iterable[GlossaryEntry], source_lang: str, target_code: str) -> str:
    """建立詞彙表區塊；沒有符合的詞條時回傳空字串"""
    is_unknown = source_lang == UNKNOWN_SOURCE
    lines = []
    for entry in glossary:
        if (is_unknown or entry.source_lang == source_lang) and entry.target_lang == target_code:
            lines.append(f"- {entry.source_text}: {entry.target_text}")
        if entry.bidirectional and (is_unknown or entry.target_lang == source_lang) and entry.source_lang == target_code:
            lines.append(f"- {entry.target_text}: {entry.source_text}")

    if not lines:
        return ""

    # 去重並保留順序
    unique_lines = list(dict.fromkeys(lines))
    return GLOSSARY_HEADER + "\n" + "\n".join(unique_lines)


def render_template(template: str, values: dict) -> str:
    """代入 {{NAME}} 佔位符，未知佔位符保留原樣"""
    rendered = RE_PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)
    return RE_EXCESS_BLANK_LINES.sub('\n\n', rendered).strip()


class PromptBuilder:
    """組合系統提示詞；模板檔為外部資源，缺檔時使用內建模板"""

    def __init__(self, template_path: Optional[str] = None):
        self.template_path = template_path or SYSTEM_PROMPT_PATH
        self._template: Optional[str] = None

    def _load_template(self) -> str:
        if self._template is not None:
            return self._template
        if os.path.exists(self.template_path):
            try:
                with open(self.template_path, 'r', encoding='utf-8') as f:
                    self._template = f.read()
                print(f"✅ 載入提示詞模板: {self.template_path}", file=sys.stderr, flush=True)
                return self._template
            except OSError as e:
                print(f"⚠️ 讀取提示詞模板失敗: {e}", file=sys.stderr, flush=True)
        self._template = DEFAULT_TEMPLATE
        return self._template

    def reload(self) -> None:
        self._template = None

    def build(self, configured_target: str, detected_language: Optional[str], glossary: Iterable[GlossaryEntry]) -> PromptResult:
        """回傳 PromptResult(instruction=完整系統提示詞, target_lang=目標語言名稱)"""
        prompt = get_prompt(configured_target, detected_language)
        source_lang = normalize_source(detected_language)
        target_code = LANGUAGE_NAME_TO_CODE.get(prompt.target_lang, '')
        glossary_block = build_glossary_block(glossary, source_lang, target_code)

        try:
            text = render_template(self._load_template(), {
                'INSTRUCTION': prompt.instruction,
                'SOURCE_LANG': source_lang,
                'TARGET_LANG': prompt.target_lang,
                'GLOSSARY': glossary_block,
            })
        except (TypeError, re.error) as e:
            print(f"⚠️ 提示詞模板代入失敗: {e}", file=sys.stderr, flush=True)
            text = BARE_FALLBACK_PROMPT

        return PromptResult(instruction=text, target_lang=prompt.target_lang)
