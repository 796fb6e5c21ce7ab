"""
遠端語音辨識 - Groq / OpenAI 相容 API
"""
import asyncio
import sys
from typing import Optional

import aiohttp

from .config import (
    DEFAULT_REMOTE_STT_MODEL,
    FALLBACK_LANGUAGE,
    REMOTE_VERIFY_TIMEOUT_S,
    TRANSCRIBE_TIMEOUT_S,
    EngineConfig,
    api_root,
)
from .errors import ProviderHTTPError, Transcription

# verbose_json 回傳的是語言名稱（如 "japanese"），轉成兩碼代碼
LANGUAGE_NAME_TO_CODE = {
    'japanese': 'ja',
    'english': 'en',
    'korean': 'ko',
    'chinese': 'zh',
    'spanish': 'es',
    'french': 'fr',
    'german': 'de',
    'italian': 'it',
    'portuguese': 'pt',
    'russian': 'ru',
    'arabic': 'ar',
    'hindi': 'hi',
    'thai': 'th',
    'vietnamese': 'vi',
    'indonesian': 'id',
    'dutch': 'nl',
    'polish': 'pl',
    'turkish': 'tr',
    'ukrainian': 'uk',
}


def normalize_language_name(name: Optional[str]) -> str:
    """語言名稱 → 代碼；查不到時原樣回傳"""
    if not name:
        return FALLBACK_LANGUAGE
    return LANGUAGE_NAME_TO_CODE.get(name.lower(), name)


def _auth_headers(api_key: str) -> dict:
    return {'Authorization': f"Bearer {api_key}"}


async def verify_connection(session: aiohttp.ClientSession, config: EngineConfig) -> bool:
    """以列出模型的輕量請求驗證金鑰與連線"""
    url = f"{api_root(config.provider, config.base_url)}/models"
    try:
        async with session.get(
            url,
            headers=_auth_headers(config.api_key),
            timeout=aiohttp.ClientTimeout(total=REMOTE_VERIFY_TIMEOUT_S),
        ) as resp:
            if resp.status == 200:
                print(f"✅ 遠端連線驗證成功: {config.provider}", file=sys.stderr, flush=True)
                return True
            print(f"⚠️ 遠端連線驗證失敗: HTTP {resp.status}", file=sys.stderr, flush=True)
            return False
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        print(f"⚠️ 遠端連線驗證錯誤: {e}", file=sys.stderr, flush=True)
        return False


async def transcribe(session: aiohttp.ClientSession, config: EngineConfig, wav: bytes) -> Transcription:
    """multipart 上傳音訊；傳輸錯誤由呼叫端轉成 TranscribeError"""
    form = aiohttp.FormData()
    form.add_field('file', wav, filename='audio.wav', content_type='audio/wav')
    form.add_field('model', config.model or DEFAULT_REMOTE_STT_MODEL)
    if config.language and config.language != 'auto':
        form.add_field('language', config.language)
    form.add_field('response_format', 'verbose_json')

    url = f"{api_root(config.provider, config.base_url)}/audio/transcriptions"
    async with session.post(
        url,
        data=form,
        headers=_auth_headers(config.api_key),
        timeout=aiohttp.ClientTimeout(total=TRANSCRIBE_TIMEOUT_S),
    ) as resp:
        if resp.status != 200:
            raise ProviderHTTPError(resp.status, await resp.text())
        data = await resp.json()

    if not isinstance(data, dict):
        raise ValueError(f"非預期的轉錄回應: {type(data).__name__}")
    return Transcription(
        text=data.get('text', '') or '',
        language=normalize_language_name(data.get('language')),
    )
