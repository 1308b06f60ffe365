from __future__ import annotations

import numpy as np

CAPTURE_SAMPLE_RATE = 16000
PLAYBACK_SAMPLE_RATE = 24000
CAPTURE_FRAME_SAMPLES = 4096


def capture_mime_type(sample_rate: int = CAPTURE_SAMPLE_RATE) -> str:
    return f"audio/pcm;rate={sample_rate}"


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    """Clamp float samples to [-1, 1] and pack them as little-endian 16-bit PCM."""
    data = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    return (data * 32767.0).astype("<i2").tobytes()


def pcm16_to_float32(buf: bytes) -> np.ndarray:
    usable = len(buf) - (len(buf) % 2)
    a = np.frombuffer(buf[:usable], dtype="<i2").astype(np.float32)
    return a / 32768.0


def rms(samples: np.ndarray) -> float:
    a = np.asarray(samples, dtype=np.float32).reshape(-1)
    if a.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(a * a)))


def duration_seconds(sample_count: int, sample_rate: int) -> float:
    if sample_rate <= 0:
        raise ValueError("sample_rate must be > 0")
    return sample_count / float(sample_rate)
