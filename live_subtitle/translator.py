"""
翻譯模組 - LLM 翻譯請求編排
🎯 雜訊過濾 → 建構提示詞 → 呼叫 LLM（429 時輪替模型）→ 廣播
"""
import asyncio
import re
import sys
import time
from typing import Callable, Optional

import aiohttp

from .broadcast import BroadcastSink
from .config import (
    AUTO_MODEL,
    DEFAULT_LLM_MODEL,
    FALLBACK_GROQ_MODELS,
    LLM_STOP,
    LLM_TEMPERATURE,
    AppConfig,
)
from .errors import FatalProviderError, ProviderHTTPError, Result, TransientProviderError
from .llm_client import ChatCompletionClient
from .prompts import PromptBuilder
from .text_utils import is_noise

RATE_LIMIT_STATUS = 429

# 自動模式可用的模型前綴；safeguard 類模型排除
GROQ_MODEL_PREFIXES = ('llama-', 'gemma', 'mixtral', 'qwen/', 'openai/')
GROQ_MODEL_EXCLUDE = 'safeguard'

RE_MOE_SIZE = re.compile(r'(\d+)x(\d+)b', re.IGNORECASE)
RE_MODEL_SIZE = re.compile(r'(\d+)b', re.IGNORECASE)


def model_size(model_id: str) -> int:
    """從模型 id 推估參數量（B）；8x7b 視為 56"""
    moe = RE_MOE_SIZE.search(model_id)
    if moe:
        return int(moe.group(1)) * int(moe.group(2))
    match = RE_MODEL_SIZE.search(model_id)
    if match:
        return int(match.group(1))
    return 0


def filter_groq_models(model_ids: list) -> list:
    """保留可用於翻譯的模型，依參數量由大到小排序"""
    filtered = [
        m for m in model_ids
        if m.startswith(GROQ_MODEL_PREFIXES) and GROQ_MODEL_EXCLUDE not in m
    ]
    return sorted(filtered, key=model_size, reverse=True)


class TranslationOrchestrator:
    """
    翻譯請求編排器

    current_model_index 是跨請求保留的輪替索引：遇到 429 前進到下一個模型後，
    下一個獨立請求會從新的位置開始，而不是再打一次已被限流的模型。成功時不重置。
    """

    def __init__(
        self,
        config_provider: Callable[[], AppConfig],
        sink: BroadcastSink,
        prompt_builder: Optional[PromptBuilder] = None,
        on_log: Optional[Callable[[str], None]] = None,
        client_factory: Callable[..., ChatCompletionClient] = ChatCompletionClient,
    ):
        self._config_provider = config_provider
        self._sink = sink
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._on_log = on_log
        self._client_factory = client_factory
        self._client: Optional[ChatCompletionClient] = None
        self.current_model_index = 0
        self.fetched_models: tuple = ()

    def _get_client(self, config: AppConfig) -> ChatCompletionClient:
        if self._client is None:
            llm = config.llm
            self._client = self._client_factory(llm.provider, llm.api_key, llm.base_url)
        return self._client

    async def reset_client(self) -> None:
        """設定變更後丟棄快取的客戶端"""
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    def reload_prompt_template(self) -> None:
        self._prompt_builder.reload()

    def _log(self, message: str) -> None:
        print(message, file=sys.stderr, flush=True)
        if self._on_log:
            self._on_log(message)

    def candidate_models(self, config: AppConfig) -> tuple:
        """回傳 (是否自動模式, 候選模型清單)"""
        model = config.llm.model or DEFAULT_LLM_MODEL
        if model == AUTO_MODEL and config.llm.provider == 'groq':
            models = self.fetched_models or config.llm.candidate_models or FALLBACK_GROQ_MODELS
            return True, tuple(models)
        return False, (model,)

    def _build_system_prompt(self, config: AppConfig, detected_language: Optional[str]) -> str:
        prompt = self._prompt_builder.build(config.translation.target_lang, detected_language, config.glossary)
        return prompt.instruction

    async def translate(self, text: str, detected_language: Optional[str] = None) -> Result:
        """
        翻譯一段辨識結果

        Returns:
            Result.success("")   空白輸入
            Result.success(None) 雜訊，已過濾
            Result.success(str)  翻譯結果（非空時已廣播）
            Result.failure(...)  TransientProviderError（限流）或 FatalProviderError
        """
        if not text or not text.strip():
            return Result.success('')

        if is_noise(text):
            print(f"🔇 過濾雜訊 / 幻覺: \"{text}\"", file=sys.stderr, flush=True)
            return Result.success(None)

        config = self._config_provider()
        is_auto, models = self.candidate_models(config)
        max_attempts = len(models) if is_auto else 1

        for attempt in range(max_attempts):
            model = models[self.current_model_index % len(models)] if is_auto else models[0]
            try:
                client = self._get_client(config)
                system_prompt = self._build_system_prompt(config, detected_language)
                print(f"🔄 送出翻譯請求: \"{text}\" (Model: {model}, lang={detected_language})", file=sys.stderr, flush=True)

                start = time.time()
                result = await client.create(
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": text},
                    ],
                    model=model,
                    temperature=LLM_TEMPERATURE,
                    stop=list(LLM_STOP),
                )
                elapsed_ms = (time.time() - start) * 1000
                print(f"[TRANS] [{elapsed_ms:.0f}ms] {text} -> {result}", file=sys.stderr, flush=True)

                if result:
                    self._sink.push("translation", {"original": text, "translation": result})
                return Result.success(result)

            except ProviderHTTPError as e:
                print(f"⚠️ LLM 錯誤 (Model: {model}): HTTP {e.status} {e.message}", file=sys.stderr, flush=True)
                if e.status == RATE_LIMIT_STATUS:
                    if is_auto and attempt < max_attempts - 1:
                        next_model = models[(self.current_model_index + 1) % len(models)]
                        self._log(f"[Auto-Switch] Rate Limit (429). Switching to: {next_model}")
                        self.current_model_index = (self.current_model_index + 1) % len(models)
                        continue
                    return Result.failure(TransientProviderError("Rate Limit Exceeded. Please wait."))
                return Result.failure(FatalProviderError(e.message or f"HTTP {e.status}"))
            except asyncio.TimeoutError:
                print(f"⚠️ LLM 翻譯超時 (Model: {model})", file=sys.stderr, flush=True)
                return Result.failure(FatalProviderError("LLM request timed out"))
            except (aiohttp.ClientError, ValueError, KeyError, TypeError) as e:
                print(f"⚠️ LLM 翻譯錯誤 (Model: {model}): {e}", file=sys.stderr, flush=True)
                return Result.failure(FatalProviderError(str(e) or type(e).__name__))

        return Result.failure(FatalProviderError("Max retries exceeded"))

    async def fetch_groq_models(self, api_key: str) -> Result:
        """抓取 Groq 模型清單，成功後作為自動模式的候選模型"""
        client = self._client_factory('groq', api_key)
        try:
            model_ids = await client.list_models()
        except ProviderHTTPError as e:
            print(f"⚠️ 無法取得 Groq 模型清單: HTTP {e.status} {e.message}", file=sys.stderr, flush=True)
            return Result.failure(FatalProviderError(e.message or f"HTTP {e.status}"))
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            print(f"⚠️ 無法取得 Groq 模型清單: {e}", file=sys.stderr, flush=True)
            return Result.failure(FatalProviderError(str(e) or type(e).__name__))
        finally:
            await client.close()

        models = filter_groq_models(model_ids)
        if models:
            self.fetched_models = tuple(models)
        print(f"✅ 取得 {len(models)} 個候選模型", file=sys.stderr, flush=True)
        return Result.success(models)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
