"""PCM WAV transcoding into the device audio layout.

Layout: ``u8 magic (0x31), u8 format, u16 sample rate`` followed by the
interleaved samples, signed little-endian. Format bits: 2 = stereo,
1 = 16-bit, 0 reserved.
"""

from __future__ import annotations

import io
import struct
import wave

from ..errors import unsupported_asset
from .limits import DeviceLimits

__all__ = ["AUDIO_MAGIC", "AUDIO_HEADER", "audio_format", "transcode_audio"]

AUDIO_MAGIC = 0x31
AUDIO_HEADER = struct.Struct("<BBH")

_FORMAT_STEREO = 0b100
_FORMAT_16BIT = 0b010

# 8-bit WAV is unsigned; flipping the top bit yields two's complement.
_U8_TO_S8 = bytes(i ^ 0x80 for i in range(256))


def audio_format(channels: int, sample_width: int) -> int:
    fmt = 0
    if channels == 2:
        fmt |= _FORMAT_STEREO
    if sample_width == 2:
        fmt |= _FORMAT_16BIT
    return fmt


def transcode_audio(data: bytes, limits: DeviceLimits) -> bytes:
    try:
        with wave.open(io.BytesIO(data), "rb") as wav:
            channels = wav.getnchannels()
            width = wav.getsampwidth()
            rate = wav.getframerate()
            nframes = wav.getnframes()
            frames = wav.readframes(nframes)
    except (wave.Error, EOFError, struct.error) as exc:
        raise unsupported_asset(f"cannot decode WAV: {exc}") from exc

    ctx = {"channels": channels, "sample_width": width, "sample_rate": rate}
    if width not in (1, 2):
        raise unsupported_asset(
            f"unsupported sample width: {width * 8} bit (expected 8 or 16)", ctx
        )
    if rate != limits.audio_sample_rate or rate > 0xFFFF:
        raise unsupported_asset(
            f"sample rate {rate} Hz does not match device rate "
            f"{limits.audio_sample_rate} Hz",
            ctx,
        )
    if channels not in limits.audio_channels or channels not in (1, 2):
        raise unsupported_asset(
            f"{channels} channels not supported, device accepts "
            f"{', '.join(str(c) for c in limits.audio_channels)}",
            ctx,
        )
    if len(frames) != nframes * channels * width:
        raise unsupported_asset("WAV data is truncated", ctx)

    if width == 1:
        frames = frames.translate(_U8_TO_S8)
    header = AUDIO_HEADER.pack(AUDIO_MAGIC, audio_format(channels, width), rate)
    return header + frames
