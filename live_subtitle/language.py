"""
語言偵測模組 - 以文字內容判斷語言
🎯 引擎回報的語言不穩定，以文字偵測結果為準
"""
from langdetect import DetectorFactory, LangDetectException, detect as _langdetect

# 固定種子，讓同一段文字永遠得到同一個結果
DetectorFactory.seed = 0

UNDETERMINED: str = "und"
MIN_DETECT_LENGTH: int = 10

# langdetect 代碼 → 引擎使用的 ISO 639-1 代碼（只收錄系統關心的語言）
DETECTOR_TO_ISO1 = {
    'ja': 'ja',
    'ko': 'ko',
    'en': 'en',
    'zh-cn': 'zh',
    'zh-tw': 'zh',
    'es': 'es',
    'fr': 'fr',
    'de': 'de',
    'it': 'it',
    'pt': 'pt',
    'ru': 'ru',
    'ar': 'ar',
    'hi': 'hi',
    'th': 'th',
    'vi': 'vi',
    'id': 'id',
    'nl': 'nl',
    'pl': 'pl',
    'tr': 'tr',
    'uk': 'uk',
}


def detect(text: str) -> str:
    """偵測文字語言，回傳 ISO 639-1 代碼或 'und'"""
    if not text or len(text.strip()) < MIN_DETECT_LENGTH:
        return UNDETERMINED

    try:
        code = _langdetect(text)
    except LangDetectException:
        return UNDETERMINED

    return DETECTOR_TO_ISO1.get(code, UNDETERMINED)


def resolve_language(text: str) -> str:
    # 文字偵測結果一律優先，無法判定時回傳 'und' 交給呼叫端決定
    return detect(text)


def is_language(text: str, expected: str) -> bool:
    return detect(text) == expected
