"""G.711 mu-law codec for voicerelay.

Telephony carriers deliver 8-bit mu-law; the realtime model speaks PCM16.
Both directions are table-driven: one 256-entry decode table and one
65536-entry encode table, built once at import.
"""

from __future__ import annotations

import struct

_BIAS = 0x84
_CLIP = 32635


def encode_sample(sample: int) -> int:
    """Compress one signed 16-bit sample to a mu-law byte."""
    sign = 0
    if sample < 0:
        sign = 0x80
        sample = -sample
    sample = min(sample, _CLIP) + _BIAS

    exponent = 7
    mask = 0x4000
    while exponent > 0 and not sample & mask:
        exponent -= 1
        mask >>= 1

    mantissa = (sample >> (exponent + 3)) & 0x0F
    return ~(sign | (exponent << 4) | mantissa) & 0xFF


def decode_sample(byte: int) -> int:
    """Expand one mu-law byte to a signed 16-bit sample.

    Inverse of :func:`encode_sample` up to quantization:
    ``((mantissa << 3) + 0x84) << exponent`` minus the bias.
    """
    value = ~byte & 0xFF
    exponent = (value >> 4) & 0x07
    mantissa = value & 0x0F
    magnitude = (((mantissa << 3) + _BIAS) << exponent) - _BIAS
    return -magnitude if value & 0x80 else magnitude


_DECODE_TABLE: tuple[int, ...] = tuple(decode_sample(b) for b in range(256))

# Indexed by the sample's two's-complement bit pattern (sample & 0xFFFF).
_ENCODE_TABLE: bytes = bytes(
    encode_sample(i if i < 0x8000 else i - 0x10000) for i in range(0x10000)
)


def mulaw_to_pcm16(data: bytes) -> bytes:
    """Decode mu-law bytes to PCM16 little-endian. Empty in, empty out."""
    if not data:
        return b""
    samples = [_DECODE_TABLE[b] for b in data]
    return struct.pack(f"<{len(samples)}h", *samples)


def pcm16_to_mulaw(data: bytes) -> bytes:
    """Encode PCM16 little-endian to mu-law. A trailing odd byte is ignored."""
    count = len(data) // 2
    if count == 0:
        return b""
    samples = struct.unpack_from(f"<{count}h", data)
    return bytes(_ENCODE_TABLE[s & 0xFFFF] for s in samples)
