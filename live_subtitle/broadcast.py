"""
字幕廣播 - 把 (原文, 譯文) 推送給所有 overlay 觀看端
🎯 fire-and-forget：不等待確認，發布失敗只記錄
"""
import asyncio
import json
import sys
from typing import Protocol

from redis.exceptions import RedisError

from .config import TRANSLATION_CHANNEL


class BroadcastSink(Protocol):
    def push(self, event: str, payload: dict) -> None:
        ...


class RedisBroadcastSink:
    """發布到 Redis 頻道，由 overlay 伺服器轉送給瀏覽器來源"""

    def __init__(self, redis_client, channel: str = TRANSLATION_CHANNEL):
        self._redis = redis_client
        self.channel = channel
        self._pending: set = set()

    def push(self, event: str, payload: dict) -> None:
        message = json.dumps({"event": event, **payload}, ensure_ascii=False)
        task = asyncio.get_running_loop().create_task(self._publish(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, message: str) -> None:
        try:
            await self._redis.publish(self.channel, message)
        except (RedisError, OSError) as e:
            print(f"⚠️ 廣播失敗: {e}", file=sys.stderr, flush=True)

    async def drain(self) -> None:
        """關閉前等待尚未送出的廣播"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
