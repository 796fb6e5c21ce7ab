"""
whisper-server 子行程監管
🎯 啟動後需撐過 1 秒觀察視窗才算成功；之後持續解析日誌更新偵測語言
"""
import asyncio
import os
import re
import shlex
import shutil
import sys
from typing import Callable, Optional

import aiohttp

from .audio import AudioInput, to_wav_bytes
from .config import (
    ENGINE_SETTLE_S,
    ENGINE_STOP_TIMEOUT_S,
    MODEL_CACHE_DIR,
    MODEL_DOWNLOAD_BASE_URL,
    TRANSCRIBE_TIMEOUT_S,
    WHISPER_SERVER_BIN,
    EngineConfig,
)
from .download import download_file
from .engine import EngineSupervisor, info
from .errors import PreconditionError, ProcessLifecycleError, ProviderHTTPError, Result

# whisper.cpp 在 stderr 輸出：「lang = ko」、「auto-detected language: ja (p = 0.98)」
RE_CONFIGURED_LANG = re.compile(r'lang\s*=\s*([a-zA-Z]{2,})')
RE_AUTO_DETECTED_LANG = re.compile(r'auto-detected language:\s+([a-zA-Z]{2,})')

ERROR_MARKERS = ('error', 'fail', 'unknown')


class ServerEngineSupervisor(EngineSupervisor):
    """以子行程執行 whisper.cpp 的 whisper-server，透過 loopback HTTP 推論"""

    def __init__(
        self,
        config_provider: Callable[[], EngineConfig],
        models_dir: str = MODEL_CACHE_DIR,
        default_bin: str = WHISPER_SERVER_BIN,
        settle_s: float = ENGINE_SETTLE_S,
    ):
        super().__init__(config_provider)
        self.models_dir = models_dir
        self.default_bin = default_bin
        self.settle_s = settle_s
        self._last_error_line = ''
        self._tasks: list = []

    def model_path(self, model: str) -> str:
        return os.path.join(self.models_dir, model)

    def resolve_bin_path(self, config: EngineConfig) -> str:
        """設定中的自訂路徑優先；否則使用預設執行檔（可在 PATH 中）"""
        if config.bin_path and config.bin_path.strip():
            return os.path.abspath(config.bin_path.strip())
        if os.sep in self.default_bin:
            return self.default_bin
        return shutil.which(self.default_bin) or self.default_bin

    # ------------------------------------------------------------
    # 啟動 / 停止
    # ------------------------------------------------------------

    async def _start_local(self, config: EngineConfig, language: str) -> Result:
        model_path = self.model_path(config.model)
        if not os.path.exists(model_path):
            return Result.failure(PreconditionError(f"找不到模型 {model_path}，請先下載 {config.model}"))

        bin_path = self.resolve_bin_path(config)

        if self.state.running_handle is not None and self._launched_language == language:
            info(f"✅ whisper-server 已在執行 ({language})，略過重啟")
            return Result.success()

        await self._stop_local()

        if not os.path.exists(bin_path):
            return Result.failure(ProcessLifecycleError(f"找不到執行檔: {bin_path}"))

        args = ['-m', model_path, '--port', str(config.port), '-l', language]
        try:
            args.extend(shlex.split(config.extra_args or ''))
        except ValueError as e:
            return Result.failure(ProcessLifecycleError(f"無效的 extraArgs: {e}"))

        self.log(f"🔄 啟動 whisper-server: {config.model} @ port {config.port} ({language})")
        info(f"🎯 執行檔: {bin_path} 參數: {args}")

        try:
            # 在執行檔目錄下執行，讓動態函式庫可以被找到
            process = await asyncio.create_subprocess_exec(
                bin_path, *args,
                cwd=os.path.dirname(bin_path) or None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return Result.failure(ProcessLifecycleError(f"無法啟動 whisper-server: {e}"))

        self._last_error_line = ''
        self.state.update(running_handle=process, current_language=language)
        self._launched_language = language
        readers = [
            asyncio.create_task(self._pump_output(process.stdout, is_stderr=False)),
            asyncio.create_task(self._pump_output(process.stderr, is_stderr=True)),
        ]
        self._tasks = readers + [asyncio.create_task(self._watch_exit(process))]

        try:
            code = await asyncio.wait_for(process.wait(), timeout=self.settle_s)
        except asyncio.TimeoutError:
            self.log(f"✅ whisper-server 已就緒 (pid={process.pid})")
            return Result.success()

        # 觀察視窗內就結束：伺服器應該常駐，無論結束碼為何都是失敗
        await asyncio.wait(readers, timeout=0.5)
        detail = f": {self._last_error_line}" if self._last_error_line else f" (code {code})"
        return Result.failure(ProcessLifecycleError(f"whisper-server 啟動後立即結束{detail}"))

    async def _stop_local(self) -> None:
        process = self.state.running_handle
        self.state.update(running_handle=None)
        self._launched_language = None

        if process is not None and process.returncode is None:
            self.log("🛑 停止 whisper-server...")
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=ENGINE_STOP_TIMEOUT_S)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                print("⚠️ whisper-server 未回應 terminate，強制結束", file=sys.stderr, flush=True)
                process.kill()
                await process.wait()

        for task in self._tasks:
            if not task.done():
                task.cancel()
        self._tasks = []

    async def _watch_exit(self, process) -> None:
        code = await process.wait()
        if self.state.clear_handle_if(process):
            self._launched_language = None
            self.log(f"⚠️ whisper-server 已結束 (code {code})")

    async def _pump_output(self, stream: Optional[asyncio.StreamReader], is_stderr: bool) -> None:
        """持續讀取引擎輸出（不只觀察視窗內），記錄錯誤行並解析語言"""
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode('utf-8', errors='replace').strip()
            if not line:
                continue
            if is_stderr and any(marker in line.lower() for marker in ERROR_MARKERS):
                self._last_error_line = line
                self.log(f"[Whisper Err] {line}")
            else:
                info(f"[Whisper] {line}")
            self._parse_language(line)

    def _parse_language(self, line: str) -> None:
        match = RE_AUTO_DETECTED_LANG.search(line) or RE_CONFIGURED_LANG.search(line)
        if match:
            detected = match.group(1).lower()
            info(f"🎯 引擎回報語言: {detected}")
            self.state.update(current_language=detected)

    # ------------------------------------------------------------
    # 下載 / 推論
    # ------------------------------------------------------------

    async def _download_local(self, model: str) -> None:
        url = f"{MODEL_DOWNLOAD_BASE_URL}/{model}"
        await download_file(url, self.model_path(model), model, self._emit_progress, session=await self._get_session())

    async def _transcribe_local(self, config: EngineConfig, audio: AudioInput) -> str:
        form = aiohttp.FormData()
        form.add_field('file', to_wav_bytes(audio), filename='audio.wav', content_type='audio/wav')
        if config.system_prompt and config.system_prompt.strip():
            form.add_field('prompt', config.system_prompt)

        data = await self._post_inference(config.port, form)
        return data['text']

    async def _post_inference(self, port: int, form: aiohttp.FormData) -> dict:
        session = await self._get_session()
        async with session.post(
            f"http://127.0.0.1:{port}/inference",
            data=form,
            timeout=aiohttp.ClientTimeout(total=TRANSCRIBE_TIMEOUT_S),
        ) as resp:
            if resp.status != 200:
                raise ProviderHTTPError(resp.status, await resp.text())
            return await resp.json(content_type=None)
