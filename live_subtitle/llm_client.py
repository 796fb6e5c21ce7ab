"""
LLM 客戶端 - OpenAI 相容的 chat completions（Groq / OpenAI）
"""
import json
import sys
from typing import Optional

import aiohttp

from .config import LLM_TIMEOUT, api_root
from .errors import ProviderHTTPError


async def _error_message(resp: aiohttp.ClientResponse) -> str:
    """取出供應商的錯誤訊息（JSON error.message 優先）"""
    body = await resp.text()
    try:
        data = json.loads(body)
    except ValueError:
        return body or f"HTTP {resp.status}"
    if isinstance(data, dict):
        error = data.get('error')
        if isinstance(error, dict) and error.get('message'):
            return error['message']
        if isinstance(error, str):
            return error
    return body or f"HTTP {resp.status}"


class ChatCompletionClient:
    """對單一供應商的輕量 HTTP 客戶端；非 2xx 一律丟出 ProviderHTTPError"""

    def __init__(self, provider: str, api_key: str, base_url: Optional[str] = None):
        self.provider = provider
        self.api_key = api_key or 'dummy'
        self.api_root = api_root(provider, base_url)
        self._session: Optional[aiohttp.ClientSession] = None
        print(f"✅ LLM 客戶端初始化 (Provider: {provider}, BaseURL: {self.api_root})", file=sys.stderr, flush=True)

    @property
    def _headers(self) -> dict:
        return {'Authorization': f"Bearer {self.api_key}"}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=10, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def create(self, messages: list, model: str, temperature: float, stop: list) -> str:
        session = await self._get_session()
        request_body = {
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "stop": stop,
        }
        async with session.post(
            f"{self.api_root}/chat/completions",
            json=request_body,
            headers=self._headers,
            timeout=aiohttp.ClientTimeout(total=LLM_TIMEOUT),
        ) as resp:
            if resp.status != 200:
                raise ProviderHTTPError(resp.status, await _error_message(resp))
            data = await resp.json()

        if not isinstance(data, dict):
            raise ValueError(f"非預期的 LLM 回應: {type(data).__name__}")
        choices = data.get('choices') or []
        if not choices:
            return ''
        return (choices[0].get('message') or {}).get('content') or ''

    async def list_models(self) -> list:
        session = await self._get_session()
        async with session.get(
            f"{self.api_root}/models",
            headers=self._headers,
            timeout=aiohttp.ClientTimeout(total=LLM_TIMEOUT),
        ) as resp:
            if resp.status != 200:
                raise ProviderHTTPError(resp.status, await _error_message(resp))
            data = await resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"非預期的模型清單回應: {type(data).__name__}")
        return [m['id'] for m in data.get('data', []) if 'id' in m]

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
