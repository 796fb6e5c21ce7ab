"""
Live Subtitle Translate - 即時語音字幕翻譯
主程式入口：音訊片段 → 語音辨識 → LLM 翻譯 → overlay 廣播
"""
import argparse
import asyncio
import base64
import binascii
import json
import sys
from typing import Optional

from .audio import pcm16_to_float
from .broadcast import RedisBroadcastSink
from .config import (
    AUDIO_CHANNEL,
    AUTO_DOWNLOAD_MODEL,
    CONTROL_CHANNEL,
    ENGINE_STRATEGY,
    EVENTS_CHANNEL,
    REDIS_HOST,
    REDIS_PORT,
    TRANSLATION_CHANNEL,
    ConfigError,
    ConfigStore,
    print_config,
)
from .engine import DOWNLOAD_PROGRESS_EVENT, LOG_EVENT, EngineSupervisor
from .errors import PreconditionError, Result
from .translator import TranslationOrchestrator


def build_supervisor(strategy: str, store: ConfigStore) -> EngineSupervisor:
    """依策略建立引擎監管者（重型模組延遲載入）"""
    if strategy == 'worker':
        from .worker_engine import WorkerEngineSupervisor
        return WorkerEngineSupervisor(store.engine)
    if strategy == 'server':
        from .server_engine import ServerEngineSupervisor
        return ServerEngineSupervisor(store.engine)
    raise ConfigError(f"未知的引擎策略: {strategy}")


def decode_audio_message(data) -> tuple:
    """
    解析音訊訊息：純 base64 的 16-bit PCM，或 JSON {"audio": base64, "language": "ja"}

    Returns:
        (float32 取樣陣列, 語言覆寫或 None)
    """
    if isinstance(data, bytes):
        data = data.decode('utf-8')
    language = None
    payload = data.strip()
    if payload.startswith('{'):
        envelope = json.loads(payload)
        payload = envelope['audio']
        language = envelope.get('language')
    raw = base64.b64decode(payload, validate=True)
    return pcm16_to_float(raw), language


async def ensure_engine_started(supervisor: EngineSupervisor, store: ConfigStore, language: Optional[str] = None) -> Result:
    """啟動引擎；本地模型不存在且允許自動下載時，先下載再啟動"""
    result = await supervisor.start(language)
    if result.ok or not isinstance(result.error, PreconditionError) or not AUTO_DOWNLOAD_MODEL:
        return result

    model = store.engine().model
    print(f"🔄 模型不存在，自動下載 {model} ...", file=sys.stderr, flush=True)
    download = await supervisor.download_model(model)
    if not download.ok:
        return download
    return await supervisor.start(language)


async def process_utterance(
    data,
    supervisor: EngineSupervisor,
    translator: TranslationOrchestrator,
    events: RedisBroadcastSink,
) -> None:
    """處理一段 VAD 切好的語音：轉錄 → 翻譯（廣播由翻譯器負責）"""
    try:
        samples, language = decode_audio_message(data)
    except (ValueError, KeyError, binascii.Error) as e:
        print(f"⚠️ 無效的音訊訊息: {e}", file=sys.stderr, flush=True)
        return

    result = await supervisor.transcribe(samples)

    # 引擎意外結束：重新啟動後再試一次（音訊路徑不下載模型，缺模型時直接回報）
    if not result.ok and isinstance(result.error, PreconditionError):
        snap = supervisor.state.snapshot()
        if not snap.is_downloading and not supervisor.status()['running']:
            print("🔄 引擎未執行，嘗試重新啟動...", file=sys.stderr, flush=True)
            started = await supervisor.start(language)
            if started.ok:
                result = await supervisor.transcribe(samples)

    if not result.ok:
        events.push('status', {'text': f"Transcribe Failed: {result.error}"})
        return

    transcription = result.value
    if not transcription.text.strip():
        return

    translated = await translator.translate(transcription.text, transcription.language)
    if not translated.ok:
        events.push('status', {'text': f"Translation Failed: {translated.error}"})
    elif translated.value is None:
        print(f"🔇 已過濾: {transcription.text}", file=sys.stderr, flush=True)


async def handle_control(
    data,
    supervisor: EngineSupervisor,
    translator: TranslationOrchestrator,
    store: ConfigStore,
    events: RedisBroadcastSink,
) -> None:
    """處理控制指令；生命週期操作在背景任務中執行，不阻塞音訊處理"""
    try:
        if isinstance(data, bytes):
            data = data.decode('utf-8')
        command = json.loads(data)
        name = command['command']
    except (ValueError, KeyError, TypeError) as e:
        print(f"⚠️ 無效的控制指令: {e}", file=sys.stderr, flush=True)
        return

    print(f"🎯 控制指令: {name}", file=sys.stderr, flush=True)
    result = Result.success()

    if name == 'start':
        result = await ensure_engine_started(supervisor, store, command.get('language'))
    elif name == 'stop':
        await supervisor.stop()
    elif name == 'restart':
        result = await supervisor.restart(command.get('language'))
    elif name == 'download':
        result = await supervisor.download_model(command.get('model') or store.engine().model)
    elif name == 'reload-config':
        try:
            store.reload()
        except ConfigError as e:
            result = Result.failure(PreconditionError(str(e)))
        else:
            await translator.reset_client()
            translator.reload_prompt_template()
            await supervisor.stop()
            result = await ensure_engine_started(supervisor, store)
    elif name == 'refresh-models':
        result = await translator.fetch_groq_models(command.get('api_key') or store.app().llm.api_key)
    elif name == 'status':
        pass
    else:
        print(f"⚠️ 未知的控制指令: {name}", file=sys.stderr, flush=True)
        return

    events.push('command-result', {
        'command': name,
        'ok': result.ok,
        'error': str(result.error) if result.error else None,
        'running': supervisor.status()['running'],
    })


async def main(config_path: Optional[str] = None, strategy: str = ENGINE_STRATEGY):
    """主循環"""
    import redis.asyncio as aioredis

    try:
        store = ConfigStore(config_path)
    except ConfigError as e:
        print(f"❌ 設定檔無效: {e}", file=sys.stderr, flush=True)
        sys.exit(1)

    print_config(store.app(), strategy)

    async def init_redis():
        last_err = None
        for attempt in range(3):
            try:
                r = aioredis.Redis(
                    host=REDIS_HOST,
                    port=REDIS_PORT,
                    db=0,
                    socket_connect_timeout=8,
                )
                await r.ping()
                print("✅ Redis 連線成功", file=sys.stderr, flush=True)
                return r
            except (aioredis.RedisError, OSError) as e:
                last_err = e
                await asyncio.sleep(1 + attempt)
        raise last_err

    try:
        r = await init_redis()
    except (aioredis.RedisError, OSError) as e:
        print(f"❌ 初始化失敗: {e}", file=sys.stderr, flush=True)
        sys.exit(1)

    overlay = RedisBroadcastSink(r, TRANSLATION_CHANNEL)
    events = RedisBroadcastSink(r, EVENTS_CHANNEL)

    supervisor = build_supervisor(strategy, store)
    supervisor.on(DOWNLOAD_PROGRESS_EVENT, lambda text: events.push(DOWNLOAD_PROGRESS_EVENT, {'text': text}))
    supervisor.on(LOG_EVENT, lambda text: events.push(LOG_EVENT, {'text': text}))
    translator = TranslationOrchestrator(
        store.app, overlay,
        on_log=lambda text: events.push(LOG_EVENT, {'text': text}),
    )

    started = await ensure_engine_started(supervisor, store)
    if not started.ok:
        print(f"⚠️ 引擎尚未啟動: {started.error}（可透過 {CONTROL_CHANNEL} 重新啟動）", file=sys.stderr, flush=True)

    p = r.pubsub()
    await p.subscribe(AUDIO_CHANNEL, CONTROL_CHANNEL)
    print(f"✅ 已訂閱: {AUDIO_CHANNEL}, {CONTROL_CHANNEL}", file=sys.stderr, flush=True)

    control_tasks: set = set()
    try:
        async for msg in p.listen():
            if msg['type'] != 'message':
                continue
            channel = msg['channel']
            if isinstance(channel, bytes):
                channel = channel.decode('utf-8')

            if channel == CONTROL_CHANNEL:
                task = asyncio.create_task(handle_control(msg['data'], supervisor, translator, store, events))
                control_tasks.add(task)
                task.add_done_callback(control_tasks.discard)
            else:
                # VAD 上游保證一次只送一段，直接串行處理
                await process_utterance(msg['data'], supervisor, translator, events)
    except asyncio.CancelledError:
        print("🛑 收到取消信號", file=sys.stderr, flush=True)
    finally:
        # 清理資源
        for task in control_tasks:
            task.cancel()
        await supervisor.close()
        await translator.close()
        await overlay.drain()
        await events.drain()
        await p.unsubscribe(AUDIO_CHANNEL, CONTROL_CHANNEL)
        await r.close()
        print("✅ 資源已清理", file=sys.stderr, flush=True)


def run():
    """程式入口點"""
    parser = argparse.ArgumentParser(description="即時語音字幕翻譯處理器")
    parser.add_argument('--config', default=None, help="設定檔路徑（JSON）")
    parser.add_argument('--strategy', default=ENGINE_STRATEGY, choices=('server', 'worker'), help="本地辨識引擎策略")
    args = parser.parse_args()
    asyncio.run(main(args.config, args.strategy))


if __name__ == "__main__":
    run()
