"""
語音辨識引擎監管 - 共用介面與狀態
🎯 同一時間只監管一個引擎實例；start / stop / download 以單一鎖串行化
🎯 兩種本地策略（子行程 server / 行程內 worker）共用遠端供應商與語言判定邏輯
"""
import abc
import asyncio
import os
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import aiohttp

from . import language as lang_resolver
from . import remote
from .audio import AudioInput, to_wav_bytes
from .config import DEFAULT_ENGINE_LANGUAGE, FALLBACK_LANGUAGE, TRANSCRIBE_TIMEOUT_S, EngineConfig
from .errors import (
    DownloadError,
    EngineError,
    FatalProviderError,
    PreconditionError,
    ProviderHTTPError,
    Result,
    TranscribeError,
    Transcription,
)

# 控制資訊級日誌：LOG_VERBOSE=1 時輸出；預設靜音
LOG_VERBOSE = os.getenv("LOG_VERBOSE", "0") == "1"
def info(msg):
    if LOG_VERBOSE:
        print(msg, file=sys.stderr, flush=True)


DOWNLOAD_PROGRESS_EVENT = 'download-progress'
LOG_EVENT = 'log'


@dataclass(frozen=True)
class EngineStatus:
    running_handle: Any
    current_language: str
    is_downloading: bool
    download_progress: str
    remote_verified: bool


class EngineState:
    """引擎可變狀態；所有讀寫都經過同一把鎖"""

    def __init__(self):
        self._lock = threading.Lock()
        self._running_handle = None
        self._current_language = 'auto'
        self._is_downloading = False
        self._download_progress = ''
        self._remote_verified = False

    def snapshot(self) -> EngineStatus:
        with self._lock:
            return EngineStatus(
                running_handle=self._running_handle,
                current_language=self._current_language,
                is_downloading=self._is_downloading,
                download_progress=self._download_progress,
                remote_verified=self._remote_verified,
            )

    def update(self, **changes) -> None:
        with self._lock:
            for name, value in changes.items():
                attr = f"_{name}"
                if not hasattr(self, attr) or name == 'lock':
                    raise AttributeError(f"EngineState 沒有欄位 {name}")
                setattr(self, attr, value)

    def try_begin_download(self) -> bool:
        """原子地標記下載開始；已有下載進行中時回傳 False"""
        with self._lock:
            if self._is_downloading:
                return False
            self._is_downloading = True
            return True

    def clear_handle_if(self, handle: Any) -> bool:
        """只在 handle 仍是當前實例時清除（避免舊行程結束時清掉新行程）"""
        with self._lock:
            if self._running_handle is handle:
                self._running_handle = None
                return True
            return False

    @property
    def current_language(self) -> str:
        with self._lock:
            return self._current_language

    @property
    def running_handle(self) -> Any:
        with self._lock:
            return self._running_handle


class EngineSupervisor(abc.ABC):
    """引擎監管者介面；子類別實作本地引擎的啟動、停止、下載與推論"""

    def __init__(self, config_provider: Callable[[], EngineConfig]):
        self._config_provider = config_provider
        self.state = EngineState()
        self._lifecycle_lock = asyncio.Lock()
        self._launched_language: Optional[str] = None
        self._listeners = {DOWNLOAD_PROGRESS_EVENT: [], LOG_EVENT: []}
        self._session: Optional[aiohttp.ClientSession] = None

    # ------------------------------------------------------------
    # 事件 / 日誌
    # ------------------------------------------------------------

    def on(self, event: str, callback: Callable[[str], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"未知事件: {event}")
        self._listeners[event].append(callback)

    def _emit(self, event: str, payload: str) -> None:
        for callback in self._listeners[event]:
            try:
                callback(payload)
            except Exception as e:
                print(f"⚠️ 事件處理錯誤 ({event}): {e}", file=sys.stderr, flush=True)

    def log(self, message: str) -> None:
        print(message, file=sys.stderr, flush=True)
        self._emit(LOG_EVENT, message)

    def _emit_progress(self, text: str) -> None:
        self.state.update(download_progress=text)
        self._emit(DOWNLOAD_PROGRESS_EVENT, text)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # 單一連線 keep-alive：轉錄請求本來就是串行的
            connector = aiohttp.TCPConnector(limit=1, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    # ------------------------------------------------------------
    # 生命週期
    # ------------------------------------------------------------

    async def start(self, language_override: Optional[str] = None) -> Result:
        config = self._config_provider()
        language = language_override or config.language or DEFAULT_ENGINE_LANGUAGE
        async with self._lifecycle_lock:
            if config.is_remote:
                return await self._start_remote(config, language)

            self.state.update(remote_verified=False)
            result = await self._start_local(config, language)
            if not result.ok:
                # 失敗的啟動不留下任何執行中的實例
                await self._stop_local()
                self.log(f"❌ 引擎啟動失敗: {result.error}")
            return result

    async def restart(self, language_override: Optional[str] = None) -> Result:
        """設定變更後重新啟動（先停再啟）"""
        await self.stop()
        return await self.start(language_override)

    async def stop(self) -> None:
        async with self._lifecycle_lock:
            await self._stop_locked()

    async def _stop_locked(self) -> None:
        self.state.update(remote_verified=False)
        try:
            await self._stop_local()
        except Exception as e:
            print(f"⚠️ 停止引擎時發生錯誤: {e}", file=sys.stderr, flush=True)
        self._launched_language = None

    async def _start_remote(self, config: EngineConfig, language: str) -> Result:
        self.log(f"🌐 使用遠端辨識供應商: {config.provider}")
        if self.state.running_handle is not None:
            await self._stop_local()
        self._launched_language = None
        self.state.update(current_language=language)

        if not config.api_key:
            self.state.update(remote_verified=False)
            return Result.failure(FatalProviderError(f"{config.provider} 未設定 API Key"))

        verified = await remote.verify_connection(await self._get_session(), config)
        self.state.update(remote_verified=verified)
        if not verified:
            return Result.failure(FatalProviderError(f"無法驗證 {config.provider} 連線"))
        return Result.success()

    async def download_model(self, model: str) -> Result:
        if not self.state.try_begin_download():
            return Result.failure(PreconditionError("已有模型下載進行中"))

        try:
            async with self._lifecycle_lock:
                self.log(f"🔄 下載模型 {model} ...")
                self._emit_progress("Starting download...")
                await self._download_local(model)
            self.log(f"✅ 模型下載完成: {model}")
            return Result.success()
        except DownloadError as e:
            self.log(f"❌ 模型下載失敗: {e}")
            return Result.failure(e)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.log(f"❌ 模型下載失敗: {e}")
            return Result.failure(DownloadError(str(e) or type(e).__name__))
        finally:
            self.state.update(is_downloading=False, download_progress='')

    # ------------------------------------------------------------
    # 轉錄
    # ------------------------------------------------------------

    async def transcribe(self, audio: AudioInput) -> Result:
        config = self._config_provider()
        snap = self.state.snapshot()
        if snap.is_downloading:
            return Result.failure(PreconditionError("模型下載中，引擎尚未就緒"))

        try:
            if config.is_remote:
                if not snap.remote_verified:
                    return Result.failure(PreconditionError(f"{config.provider} 連線尚未驗證"))
                wav = to_wav_bytes(audio)
                transcription = await asyncio.wait_for(
                    remote.transcribe(await self._get_session(), config, wav),
                    timeout=TRANSCRIBE_TIMEOUT_S,
                )
                info(f"🎯 遠端轉錄: {transcription.text[:20]} ({transcription.language})")
                return Result.success(transcription)

            if not self._local_ready():
                return Result.failure(PreconditionError("辨識引擎尚未就緒"))

            text = await asyncio.wait_for(self._transcribe_local(config, audio), timeout=TRANSCRIBE_TIMEOUT_S)
            final_lang = self._resolve_output_language(text)
            info(f"🎯 最終判定 - 文字: \"{text[:20]}...\", 語言: {final_lang}")
            return Result.success(Transcription(text=text, language=final_lang))

        except asyncio.TimeoutError:
            self._on_transcribe_timeout()
            self.log(f"⚠️ 轉錄逾時 ({TRANSCRIBE_TIMEOUT_S:.0f}s)")
            return Result.failure(TranscribeError("TRANSCRIPTION_TIMEOUT"))
        except EngineError as e:
            self.log(f"⚠️ 轉錄失敗: {e}")
            return Result.failure(e if isinstance(e, TranscribeError) else TranscribeError(str(e)))
        except ProviderHTTPError as e:
            self.log(f"⚠️ 轉錄失敗: HTTP {e.status} {e.message[:80]}")
            return Result.failure(TranscribeError(f"HTTP {e.status}: {e.message}"))
        except (aiohttp.ClientError, ValueError, KeyError, OSError) as e:
            self.log(f"⚠️ 轉錄失敗: {e}")
            return Result.failure(TranscribeError(str(e) or type(e).__name__))

    def _resolve_output_language(self, text: str) -> str:
        """引擎回報的語言為初始值，文字偵測有把握時一律以文字為準"""
        current = self.state.current_language
        initial = current if current and current != 'auto' else FALLBACK_LANGUAGE

        content = text.strip()
        if not content:
            return initial

        detected = lang_resolver.resolve_language(content)
        if detected != lang_resolver.UNDETERMINED:
            if detected != initial:
                info(f"🔄 依文字判定語言: {initial} -> {detected}")
            final = detected
        else:
            final = initial

        self.state.update(current_language=final)
        return final

    def status(self) -> dict:
        snap = self.state.snapshot()
        return {'running': snap.remote_verified or snap.running_handle is not None}

    async def close(self) -> None:
        await self.stop()
        if self._session is not None and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------
    # 子類別實作
    # ------------------------------------------------------------

    @abc.abstractmethod
    def model_path(self, model: str) -> str:
        """模型資產在本機的位置"""

    @abc.abstractmethod
    async def _start_local(self, config: EngineConfig, language: str) -> Result:
        ...

    @abc.abstractmethod
    async def _stop_local(self) -> None:
        ...

    @abc.abstractmethod
    async def _download_local(self, model: str) -> None:
        ...

    @abc.abstractmethod
    async def _transcribe_local(self, config: EngineConfig, audio: AudioInput) -> str:
        ...

    def _local_ready(self) -> bool:
        return self.state.running_handle is not None

    def _on_transcribe_timeout(self) -> None:
        pass
