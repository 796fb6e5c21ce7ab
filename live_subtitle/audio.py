"""
音訊工具 - PCM / float32 / WAV 互轉
"""
import io
import wave
from typing import Union

import numpy as np

from .config import BYTES_PER_SAMPLE, CHANNELS, SAMPLE_RATE

AudioInput = Union[bytes, bytearray, np.ndarray]

_WAV_MAGIC = b'RIFF'


def pcm16_to_float(raw: bytes) -> np.ndarray:
    """16-bit PCM bytes → float32 [-1, 1]"""
    return np.frombuffer(raw, dtype=np.int16).astype(np.float32, copy=False) / 32768.0


def float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return scaled.astype('<i2').tobytes()


def encode_wav(samples: np.ndarray, sample_rate: int = SAMPLE_RATE) -> bytes:
    """float32 取樣 → 單聲道 16kHz 16-bit WAV"""
    buf = io.BytesIO()
    with wave.open(buf, 'wb') as wav:
        wav.setnchannels(CHANNELS)
        wav.setsampwidth(BYTES_PER_SAMPLE)
        wav.setframerate(sample_rate)
        wav.writeframes(float_to_pcm16(samples))
    return buf.getvalue()


def to_wav_bytes(audio: AudioInput) -> bytes:
    """已是 WAV 的位元組原樣回傳，其餘視為 float32 取樣或 16-bit PCM 後編碼"""
    if isinstance(audio, (bytes, bytearray)):
        data = bytes(audio)
        if data[:4] == _WAV_MAGIC:
            return data
        return encode_wav(pcm16_to_float(data))
    return encode_wav(audio)


def to_float_array(audio: AudioInput) -> np.ndarray:
    """任何輸入 → float32 取樣陣列（行程內推論使用）"""
    if isinstance(audio, np.ndarray):
        return audio.astype(np.float32, copy=False)
    data = bytes(audio)
    if data[:4] == _WAV_MAGIC:
        with wave.open(io.BytesIO(data), 'rb') as wav:
            data = wav.readframes(wav.getnframes())
    return pcm16_to_float(data)
