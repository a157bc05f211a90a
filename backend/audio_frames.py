from dataclasses import dataclass

import numpy as np

PCM16_MIN = -32768
PCM16_MAX = 32767


@dataclass(frozen=True)
class AudioFrame:
    """One chunk of mono PCM16 little-endian audio."""

    pcm: bytes
    sample_rate: int
    index: int = 0

    @property
    def sample_count(self) -> int:
        return len(self.pcm) // 2

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.sample_count / self.sample_rate


def float_to_pcm16(samples) -> np.ndarray:
    """Convert float samples to int16 with a hard clamp, truncating toward zero."""
    scaled = np.asarray(samples, dtype=np.float64) * 32768.0
    return np.clip(scaled, PCM16_MIN, PCM16_MAX).astype("<i2")


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    usable = len(pcm) - (len(pcm) % 2)
    ints = np.frombuffer(pcm[:usable], dtype="<i2")
    return ints.astype(np.float32) / 32768.0
