"""
模型下載 - 串流寫入暫存檔，完成後原子替換
🎯 任何失敗都會刪除暫存檔，最終路徑永遠不會留下半成品
"""
import os
import sys
from typing import AsyncIterator, Callable, Optional

import aiohttp

from .config import DOWNLOAD_CHUNK_SIZE

ProgressCallback = Callable[[str], None]

TEMP_SUFFIX = '.part'


def _remove_quietly(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        print(f"⚠️ 無法刪除暫存檔 {path}: {e}", file=sys.stderr, flush=True)


async def stream_to_file(
    chunks: AsyncIterator[bytes],
    total: int,
    dest_path: str,
    label: str,
    on_progress: Optional[ProgressCallback] = None,
) -> None:
    """將位元組串流寫入 dest_path.part，每跨過一個整數百分比回報一次進度"""
    temp_path = dest_path + TEMP_SUFFIX
    current = 0
    last_pct = 0

    try:
        with open(temp_path, 'wb') as f:
            async for chunk in chunks:
                f.write(chunk)
                current += len(chunk)
                if total > 0 and on_progress:
                    pct = min(100, current * 100 // total)
                    if pct > last_pct:
                        last_pct = pct
                        on_progress(f"Downloading {label}: {pct}%")
        os.replace(temp_path, dest_path)
    except BaseException:
        _remove_quietly(temp_path)
        raise


async def download_file(
    url: str,
    dest_path: str,
    label: str,
    on_progress: Optional[ProgressCallback] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> None:
    """HTTP GET 串流下載；非 200 回應視為失敗"""
    os.makedirs(os.path.dirname(dest_path) or '.', exist_ok=True)
    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession()

    try:
        # 大型模型可能下載數十分鐘，只限制連線與讀取間隔
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=120)
        async with session.get(url, timeout=timeout) as response:
            if response.status != 200:
                raise aiohttp.ClientResponseError(
                    response.request_info, response.history,
                    status=response.status, message=f"HTTP {response.status} for {url}",
                )
            total = int(response.headers.get('Content-Length', 0) or 0)
            await stream_to_file(
                response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE),
                total, dest_path, label, on_progress,
            )
    finally:
        if owns_session:
            await session.close()
