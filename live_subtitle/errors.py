"""
錯誤分類與結果型別
🎯 元件邊界一律回傳 Result，不向外丟出例外
"""
from dataclasses import dataclass
from typing import Any, Optional


class EngineError(Exception):
    """所有可預期錯誤的基底類別"""


class PreconditionError(EngineError):
    """前置條件不足（模型未就緒、下載中等），不重試"""


class TransientProviderError(EngineError):
    """供應商限流（HTTP 429），已輪替所有候選模型後仍失敗"""


class FatalProviderError(EngineError):
    """其他 HTTP / 網路錯誤，立即回報不重試"""


class ProcessLifecycleError(EngineError):
    """子行程啟動失敗或過早結束"""


class DownloadError(EngineError):
    """模型下載失敗（暫存檔一律清除）"""


class TranscribeError(EngineError):
    """轉錄請求失敗（傳輸、解析、逾時）"""


class ProviderHTTPError(Exception):
    """LLM / 遠端 API 回傳非 2xx，攜帶狀態碼與供應商訊息"""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


@dataclass(frozen=True)
class Result:
    value: Any = None
    error: Optional[EngineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: EngineError) -> "Result":
        return cls(error=error)


@dataclass(frozen=True)
class Transcription:
    text: str
    language: str
