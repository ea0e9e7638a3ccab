"""Frame-level audio conversion between the telephony and model formats.

Inbound:  mu-law 8 kHz  -> PCM16 8 kHz  -> PCM16 16 kHz
Outbound: PCM16 16 kHz  -> PCM16 8 kHz  -> mu-law 8 kHz
"""

from __future__ import annotations

from voicerelay.audio.codecs import mulaw_to_pcm16, pcm16_to_mulaw
from voicerelay.audio.resampler import DownsampleMode, Resampler
from voicerelay.core.events import AudioFrame, Encoding


class AudioCodecPipeline:
    """Stateless converter. One instance may be shared across every call."""

    def __init__(self, downsample: DownsampleMode | str = DownsampleMode.DECIMATE) -> None:
        self.downsample_mode = DownsampleMode(downsample)
        self._upsampler = Resampler(8000, 16000)
        self._downsampler = Resampler(16000, 8000, self.downsample_mode)

    def decode(self, frame: AudioFrame) -> AudioFrame:
        """Caller audio to model audio."""
        if frame.encoding != Encoding.MULAW or frame.sample_rate != 8000:
            raise ValueError(
                f"decode expects mulaw/8000, got {frame.encoding.value}/{frame.sample_rate}"
            )
        pcm = self._upsampler.process(mulaw_to_pcm16(frame.data))
        return AudioFrame(encoding=Encoding.PCM16, sample_rate=16000, data=pcm)

    def encode(self, frame: AudioFrame) -> AudioFrame:
        """Model audio to caller audio."""
        if frame.encoding != Encoding.PCM16 or frame.sample_rate != 16000:
            raise ValueError(
                f"encode expects pcm16/16000, got {frame.encoding.value}/{frame.sample_rate}"
            )
        mulaw = pcm16_to_mulaw(self._downsampler.process(frame.data))
        return AudioFrame(encoding=Encoding.MULAW, sample_rate=8000, data=mulaw)
