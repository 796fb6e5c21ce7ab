"""
行程內語音辨識 - stable-ts (faster-whisper) 於單執行緒 executor 推論
🎯 推論不佔用事件迴圈；逾時後重置就緒狀態，避免後續請求永久卡住
"""
import asyncio
import os
import shutil
import sys
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .audio import AudioInput, to_float_array
from .config import MODEL_CACHE_DIR, EngineConfig
from .engine import EngineSupervisor, info
from .errors import DownloadError, PreconditionError, ProcessLifecycleError, Result, TranscribeError

# stable-ts 轉錄參數（不變）
_STABLE_TS_KWARGS = {
    "beam_size": 5,
    "condition_on_previous_text": False,
    "no_speech_threshold": 0.5,
    "word_timestamps": False,
    "vad": True,
    "suppress_silence": True,
    "regroup": False,
    "verbose": None,
}

# 依序嘗試的裝置 / 精度組合
_DEVICE_CANDIDATES = (("cuda", "float16"), ("cuda", "int8_float16"), ("cpu", "int8"))

MODEL_MARKER_FILE = 'model.bin'


class WorkerEngineSupervisor(EngineSupervisor):
    """行程內推論引擎；模型資產為 CTranslate2 目錄"""

    def __init__(self, config_provider: Callable[[], EngineConfig], models_dir: str = MODEL_CACHE_DIR):
        super().__init__(config_provider)
        self.models_dir = models_dir
        self.worker_status = 'idle'  # idle / loading / ready / transcribing / error
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='asr-worker')

    def model_path(self, model: str) -> str:
        return os.path.join(self.models_dir, model.replace('/', '--'))

    def _model_available(self, model: str) -> bool:
        return os.path.isfile(os.path.join(self.model_path(model), MODEL_MARKER_FILE))

    # ------------------------------------------------------------
    # 載入 / 卸載
    # ------------------------------------------------------------

    async def _start_local(self, config: EngineConfig, language: str) -> Result:
        if not self._model_available(config.model):
            return Result.failure(PreconditionError(f"找不到模型 {self.model_path(config.model)}，請先下載 {config.model}"))

        if self.state.running_handle is not None and self._launched_language == language:
            info(f"✅ 模型已載入 ({language})，略過重新載入")
            return Result.success()

        await self._stop_local()

        self.worker_status = 'loading'
        self.log(f"🔄 載入模型 {config.model} ...")
        loop = asyncio.get_running_loop()
        try:
            model = await loop.run_in_executor(self._executor, self._load_model, self.model_path(config.model))
        except Exception as e:
            self.worker_status = 'error'
            return Result.failure(ProcessLifecycleError(f"模型載入失敗: {e}"))

        self.state.update(running_handle=model, current_language=language)
        self._launched_language = language
        self.worker_status = 'ready'
        self.log(f"✅ 模型已就緒: {config.model}")
        return Result.success()

    def _load_model(self, path: str):
        import torch
        import stable_whisper  # 延遲避免啟動阻塞

        last_error: Optional[Exception] = None
        for device, compute_type in _DEVICE_CANDIDATES:
            if device == "cuda" and not torch.cuda.is_available():
                continue
            try:
                info(f"🔄 使用 stable-ts 載入 {path}: {device}/{compute_type}...")
                return stable_whisper.load_faster_whisper(
                    path,
                    device=device,
                    compute_type=compute_type,
                    cpu_threads=os.cpu_count() or 4,
                )
            except Exception as e:
                info(f"⚠️ {device}/{compute_type} 失敗: {e}")
                last_error = e
        raise RuntimeError(f"所有裝置皆載入失敗: {last_error}")

    async def _stop_local(self) -> None:
        if self.state.running_handle is not None:
            self.log("🛑 卸載模型...")
        self.state.update(running_handle=None)
        self._launched_language = None
        self.worker_status = 'idle'

    # ------------------------------------------------------------
    # 下載
    # ------------------------------------------------------------

    async def _download_local(self, model: str) -> None:
        dest = self.model_path(model)
        temp = dest + '.part'
        shutil.rmtree(temp, ignore_errors=True)
        os.makedirs(self.models_dir, exist_ok=True)

        self._emit_progress(f"Downloading {model}: 0%")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._fetch_model, model, temp)
            if os.path.isdir(dest):
                shutil.rmtree(dest)
            os.replace(temp, dest)
        except Exception as e:
            shutil.rmtree(temp, ignore_errors=True)
            raise DownloadError(str(e) or type(e).__name__) from e
        self._emit_progress(f"Downloading {model}: 100%")

    @staticmethod
    def _fetch_model(model: str, output_dir: str) -> str:
        from faster_whisper import download_model

        return download_model(model, output_dir=output_dir)

    # ------------------------------------------------------------
    # 推論
    # ------------------------------------------------------------

    def _local_ready(self) -> bool:
        return self.state.running_handle is not None and self.worker_status in ('ready', 'transcribing')

    async def _transcribe_local(self, config: EngineConfig, audio: AudioInput) -> str:
        model = self.state.running_handle
        samples = to_float_array(audio)
        # 以啟動時決定的語言（含覆寫）推論
        launched = self._launched_language or config.language
        language = launched if launched and launched != 'auto' else None

        self.worker_status = 'transcribing'
        info(f"🎯 送出推論請求: {len(samples)} samples")
        loop = asyncio.get_running_loop()
        try:
            text, detected = await loop.run_in_executor(
                self._executor, self._infer, model, samples, language, config.system_prompt,
            )
        except Exception as e:
            self.worker_status = 'ready'
            traceback.print_exc()
            raise TranscribeError(f"推論失敗: {e}") from e

        self.worker_status = 'ready'
        if detected:
            self.state.update(current_language=detected)
        return text

    @staticmethod
    def _infer(model, samples, language: Optional[str], prompt: str):
        result = model.transcribe(
            samples,
            language=language,
            initial_prompt=prompt or None,
            **_STABLE_TS_KWARGS,
        )
        text = result.text if hasattr(result, 'text') else str(result)
        return text.strip(), getattr(result, 'language', None)

    def _on_transcribe_timeout(self) -> None:
        if self.state.running_handle is not None:
            self.worker_status = 'ready'
            print("⚠️ 推論逾時，重置為就緒狀態", file=sys.stderr, flush=True)

    async def close(self) -> None:
        await super().close()
        self._executor.shutdown(wait=False)
