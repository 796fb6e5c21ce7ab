"""
配置模組 - 環境變數常數 + 設定檔快照
🎯 核心只讀取設定，從不寫回；每次生命週期操作取一份不可變快照
"""
import json
import os
import sys
from dataclasses import dataclass, field
from typing import Optional

# === 音訊參數 ===
SAMPLE_RATE: int = 16000
BYTES_PER_SAMPLE: int = 2
CHANNELS: int = 1

# === Redis 設定 ===
REDIS_HOST: str = os.getenv('REDIS_HOST', 'redis')
REDIS_PORT: int = int(os.getenv('REDIS_PORT', 6379))
AUDIO_CHANNEL: str = os.getenv('AUDIO_CHANNEL', 'audio_feed')
TRANSLATION_CHANNEL: str = os.getenv('TRANSLATION_CHANNEL', 'translation_feed')
CONTROL_CHANNEL: str = os.getenv('CONTROL_CHANNEL', 'engine_control')
EVENTS_CHANNEL: str = os.getenv('EVENTS_CHANNEL', 'engine_events')

# === 設定檔路徑 ===
APP_CONFIG_PATH: str = os.getenv('APP_CONFIG_PATH', 'config.json')
SYSTEM_PROMPT_PATH: str = os.getenv('SYSTEM_PROMPT_PATH', 'system_prompt.txt')

# === 語音辨識引擎 ===
# - server: whisper.cpp 的 whisper-server 子行程（loopback HTTP）
# - worker: 行程內 stable-ts / faster-whisper（單執行緒 executor）
ENGINE_STRATEGY: str = os.getenv('ENGINE_STRATEGY', 'server')
WHISPER_SERVER_BIN: str = os.getenv('WHISPER_SERVER_BIN', 'whisper-server')
MODEL_CACHE_DIR: str = os.getenv('MODEL_CACHE_DIR', os.path.join(os.path.expanduser('~'), '.cache', 'whisper-models'))
MODEL_DOWNLOAD_BASE_URL: str = 'https://huggingface.co/ggerganov/whisper.cpp/resolve/main'
DEFAULT_ENGINE_PORT: int = 8081
DEFAULT_ENGINE_MODEL: str = 'ggml-base.bin'
DEFAULT_ENGINE_LANGUAGE: str = 'ja'
FALLBACK_LANGUAGE: str = 'ja'

# 啟動後需存活的觀察視窗（秒）
ENGINE_SETTLE_S: float = 1.0
# 停止子行程時等待結束的秒數，逾時則強制 kill
ENGINE_STOP_TIMEOUT_S: float = 5.0
# 單次轉錄逾時（秒），逾時視為失敗並重置就緒狀態
TRANSCRIBE_TIMEOUT_S: float = 60.0
REMOTE_VERIFY_TIMEOUT_S: float = 10.0
# 啟動時模型不存在就自動下載
AUTO_DOWNLOAD_MODEL: bool = os.getenv('AUTO_DOWNLOAD_MODEL', '1') == '1'
DOWNLOAD_CHUNK_SIZE: int = 64 * 1024

# === 遠端供應商 API 根路徑 ===
PROVIDER_API_ROOTS: dict = {
    'groq': 'https://api.groq.com/openai/v1',
    'openai': 'https://api.openai.com/v1',
}
DEFAULT_REMOTE_STT_MODEL: str = 'whisper-large-v3-turbo'

# === LLM 翻譯設定 ===
LLM_TEMPERATURE: float = 0.3
LLM_STOP: tuple = ('<|',)
LLM_TIMEOUT: int = int(os.getenv('LLM_TIMEOUT', 30))
AUTO_MODEL: str = 'auto'
DEFAULT_LLM_MODEL: str = 'llama-3.3-70b-versatile'
# 尚未抓取模型清單前，auto 模式使用的內建備援組合
FALLBACK_GROQ_MODELS: tuple = ('llama-3.3-70b-versatile', 'llama-3.1-8b-instant')

LOCAL_PROVIDER: str = 'local'
REMOTE_PROVIDERS: frozenset = frozenset({'groq', 'openai'})


class ConfigError(ValueError):
    """設定檔內容無效"""


@dataclass(frozen=True)
class GlossaryEntry:
    id: str
    source_text: str
    source_lang: str
    target_text: str
    target_lang: str
    bidirectional: bool = False


@dataclass(frozen=True)
class EngineConfig:
    provider: str = LOCAL_PROVIDER
    model: str = DEFAULT_ENGINE_MODEL
    language: str = DEFAULT_ENGINE_LANGUAGE
    port: int = DEFAULT_ENGINE_PORT
    extra_args: str = ''
    system_prompt: str = ''
    api_key: str = ''
    base_url: str = ''
    bin_path: str = ''

    @property
    def is_remote(self) -> bool:
        return self.provider in REMOTE_PROVIDERS


@dataclass(frozen=True)
class LLMConfig:
    provider: str = 'groq'
    api_key: str = ''
    base_url: str = ''
    model: str = DEFAULT_LLM_MODEL
    candidate_models: tuple = ()


@dataclass(frozen=True)
class TranslationConfig:
    target_lang: str = 'auto'


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    glossary: tuple = ()


def api_root(provider: str, base_url: Optional[str] = None) -> str:
    """取得供應商 API 根路徑（自訂 base_url 優先，groq 固定）"""
    if provider != 'groq' and base_url and base_url.strip():
        return base_url.strip().rstrip('/')
    return PROVIDER_API_ROOTS.get(provider, PROVIDER_API_ROOTS['openai'])


# ============================================================
# 設定檔解析（camelCase 與 snake_case 皆可）
# ============================================================

def _pick(data: dict, *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _parse_engine(data: dict) -> EngineConfig:
    provider = _pick(data, 'provider', default=LOCAL_PROVIDER)
    if provider != LOCAL_PROVIDER and provider not in REMOTE_PROVIDERS:
        raise ConfigError(f"未知的辨識供應商: {provider}")
    return EngineConfig(
        provider=provider,
        model=_pick(data, 'model', default=DEFAULT_ENGINE_MODEL),
        language=_pick(data, 'language', default=DEFAULT_ENGINE_LANGUAGE),
        port=int(_pick(data, 'port', 'serverPort', 'server_port', default=DEFAULT_ENGINE_PORT)),
        extra_args=_pick(data, 'extraArgs', 'extra_args', default=''),
        system_prompt=_pick(data, 'systemPrompt', 'system_prompt', default=''),
        api_key=_pick(data, 'apiKey', 'api_key', default=''),
        base_url=_pick(data, 'baseUrl', 'base_url', default=''),
        bin_path=_pick(data, 'binPath', 'bin_path', default=''),
    )


def _parse_llm(data: dict) -> LLMConfig:
    provider = _pick(data, 'provider', default='groq')
    if provider not in REMOTE_PROVIDERS:
        raise ConfigError(f"未知的 LLM 供應商: {provider}")
    return LLMConfig(
        provider=provider,
        api_key=_pick(data, 'apiKey', 'api_key', default=''),
        base_url=_pick(data, 'baseUrl', 'base_url', default=''),
        model=_pick(data, 'model', default=DEFAULT_LLM_MODEL),
        candidate_models=tuple(_pick(data, 'groqModels', 'candidate_models', default=())),
    )


def _parse_glossary(items: list) -> tuple:
    entries = []
    seen_ids = set()
    for item in items:
        entry = GlossaryEntry(
            id=str(item['id']),
            source_text=item.get('sourceText', item.get('source_text', '')),
            source_lang=item.get('sourceLang', item.get('source_lang', '')),
            target_text=item.get('targetText', item.get('target_text', '')),
            target_lang=item.get('targetLang', item.get('target_lang', '')),
            bidirectional=bool(item.get('bidirectional', False)),
        )
        if entry.id in seen_ids:
            raise ConfigError(f"詞彙表 id 重複: {entry.id}")
        seen_ids.add(entry.id)
        entries.append(entry)
    return tuple(entries)


def parse_config(data: dict) -> AppConfig:
    """將設定字典轉成不可變的 AppConfig 快照"""
    engine_data = _pick(data, 'engine', 'whisper', default={})
    translation_data = _pick(data, 'translation', default={})
    return AppConfig(
        engine=_parse_engine(engine_data),
        llm=_parse_llm(_pick(data, 'llm', default={})),
        translation=TranslationConfig(
            target_lang=_pick(translation_data, 'targetLang', 'target_lang', default='auto'),
        ),
        glossary=_parse_glossary(_pick(data, 'glossary', default=[])),
    )


def load_config(path: Optional[str] = None) -> AppConfig:
    """讀取 JSON 設定檔；檔案不存在時回傳預設值"""
    path = path or APP_CONFIG_PATH
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        print(f"⚠️ 找不到設定檔 {path}，使用預設值", file=sys.stderr, flush=True)
        return AppConfig()
    except json.JSONDecodeError as e:
        raise ConfigError(f"設定檔格式錯誤 {path}: {e}") from e
    return parse_config(data)


class ConfigStore:
    """持有目前的設定快照；reload() 以新快照整個替換，不做部分修改"""

    def __init__(self, path: Optional[str] = None):
        self.path = path or APP_CONFIG_PATH
        self.current: AppConfig = load_config(self.path)

    def reload(self) -> AppConfig:
        self.current = load_config(self.path)
        print(f"✅ 已重新載入設定: {self.path}", file=sys.stderr, flush=True)
        return self.current

    def app(self) -> AppConfig:
        return self.current

    def engine(self) -> EngineConfig:
        return self.current.engine


_CONFIG_SEPARATOR: str = "=" * 50


def print_config(config: AppConfig, strategy: str = ENGINE_STRATEGY) -> None:
    """印出當前配置"""
    engine = config.engine
    lines = (
        f"🎯 辨識引擎: {strategy} / {engine.provider} ({engine.model}, lang={engine.language})",
        f"🎯 翻譯模型: {config.llm.provider} / {config.llm.model}",
        f"🎯 翻譯方向: {config.translation.target_lang}",
        f"🎯 詞彙表: {len(config.glossary)} 組",
        f"🎯 Redis: {REDIS_HOST}:{REDIS_PORT} ({AUDIO_CHANNEL} -> {TRANSLATION_CHANNEL})",
    )
    print(_CONFIG_SEPARATOR, file=sys.stderr, flush=True)
    for line in lines:
        print(line, file=sys.stderr, flush=True)
    print(_CONFIG_SEPARATOR, file=sys.stderr, flush=True)
