"""Fixed-ratio sample rate conversion between 8 kHz and 16 kHz.

All audio is PCM16 little-endian mono. Upsampling inserts midpoints;
downsampling decimates by default, with pair averaging as an opt-in mode.
"""

from __future__ import annotations

import struct
from enum import Enum


class DownsampleMode(str, Enum):
    DECIMATE = "decimate"
    AVERAGE = "average"


def _unpack(data: bytes) -> tuple[int, ...]:
    count = len(data) // 2
    if count == 0:
        return ()
    return struct.unpack_from(f"<{count}h", data)


def _pack(samples: list[int]) -> bytes:
    if not samples:
        return b""
    return struct.pack(f"<{len(samples)}h", *samples)


def upsample_8k_to_16k(data: bytes) -> bytes:
    """Double the sample rate.

    Each input sample is followed by the midpoint to its successor (truncated
    toward zero); the last sample is repeated. Output has exactly twice the
    input sample count.
    """
    samples = _unpack(data)
    if not samples:
        return b""

    out: list[int] = []
    for current, following in zip(samples, samples[1:]):
        out.append(current)
        out.append(int((current + following) / 2))
    out.append(samples[-1])
    out.append(samples[-1])
    return _pack(out)


def downsample_16k_to_8k(
    data: bytes, mode: DownsampleMode = DownsampleMode.DECIMATE
) -> bytes:
    """Halve the sample rate.

    ``DECIMATE`` keeps every even-indexed sample. ``AVERAGE`` emits the
    truncated mean of each pair; an unpaired last sample is passed through.
    """
    samples = _unpack(data)
    if not samples:
        return b""

    if mode == DownsampleMode.AVERAGE:
        out = [
            int((samples[i] + samples[i + 1]) / 2) if i + 1 < len(samples) else samples[i]
            for i in range(0, len(samples), 2)
        ]
    else:
        out = list(samples[::2])
    return _pack(out)


class Resampler:
    """Bound pair of rates, for callers that want one object per direction.

    Usage:
        up = Resampler(8000, 16000)
        pcm_16k = up.process(pcm_8k)
    """

    def __init__(
        self,
        from_rate: int,
        to_rate: int,
        mode: DownsampleMode = DownsampleMode.DECIMATE,
    ) -> None:
        if (from_rate, to_rate) not in {(8000, 16000), (16000, 8000), (8000, 8000), (16000, 16000)}:
            raise ValueError(f"Unsupported rate conversion: {from_rate} -> {to_rate}")
        self.from_rate = from_rate
        self.to_rate = to_rate
        self.mode = mode

    def process(self, data: bytes) -> bytes:
        if self.from_rate == self.to_rate:
            return data
        if self.from_rate < self.to_rate:
            return upsample_8k_to_16k(data)
        return downsample_16k_to_8k(data, self.mode)

    @property
    def needs_resample(self) -> bool:
        return self.from_rate != self.to_rate
