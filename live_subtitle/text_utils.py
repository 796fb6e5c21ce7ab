"""
文字處理模組 - 雜訊 / 幻覺過濾
🚀 預編譯正則：在送出任何翻譯請求前攔截轉錄雜訊
"""
import re
import unicodedata

# ============================================================
# 🚀 預編譯正則表達式（模組載入時只編譯一次，依序比對）
# ============================================================

NOISE_PATTERNS = (
    # 系統 / 幻覺標籤：[BLANK_AUDIO]、[MUSIC]
    re.compile(r'^\[.*\]$', re.DOTALL),
    # (音楽)、(視聴中)
    re.compile(r'^\(.*\)$', re.DOTALL),
    # 全形括號（笑）
    re.compile(r'^（.*）$', re.DOTALL),
    # 只有標點：...、？、！
    re.compile(r'^[\s.?!,;:。、．！？・]+$'),
    # 笑聲：www、ｗｗｗ
    re.compile(r'^[wWｗＷ]+$'),
    # 單一字母
    re.compile(r'^[a-zA-Z]$'),
    # 音效：*click*
    re.compile(r'^\*.*\*$', re.DOTALL),
)


def _is_punctuation_only(text: str) -> bool:
    """所有字元都是 Unicode 標點或空白"""
    return all(c.isspace() or unicodedata.category(c).startswith('P') for c in text)


def is_noise(text: str) -> bool:
    """判斷轉錄結果是否為雜訊或幻覺"""
    if text is None:
        return True

    trimmed = text.strip()
    if not trimmed:
        return True

    if any(pattern.match(trimmed) for pattern in NOISE_PATTERNS):
        return True

    return _is_punctuation_only(trimmed)
