"""Device limits consumed by the asset transcoders."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

RGB = Tuple[int, int, int]

__all__ = ["RGB", "DeviceLimits", "SWEETIE16"]

# Default device palette (SWEETIE-16, https://lospec.com/palette-list/sweetie-16).
SWEETIE16: Tuple[RGB, ...] = (
    (0x1A, 0x1C, 0x2C),  # black
    (0x5D, 0x27, 0x5D),  # purple
    (0xB1, 0x3E, 0x53),  # red
    (0xEF, 0x7D, 0x57),  # orange
    (0xFF, 0xCD, 0x75),  # yellow
    (0xA7, 0xF0, 0x70),  # light green
    (0x38, 0xB7, 0x64),  # green
    (0x25, 0x71, 0x79),  # dark green
    (0x29, 0x36, 0x6F),  # dark blue
    (0x3B, 0x5D, 0xC9),  # blue
    (0x41, 0xA6, 0xF6),  # light blue
    (0x73, 0xEF, 0xF7),  # cyan
    (0xF4, 0xF4, 0xF4),  # white
    (0x94, 0xB0, 0xC2),  # light gray
    (0x56, 0x6C, 0x86),  # gray
    (0x33, 0x3C, 0x57),  # dark gray
)


@dataclass(frozen=True, slots=True)
class DeviceLimits:
    max_image_width: int = 1024
    max_image_height: int = 1024
    max_palette_size: int = 256
    audio_sample_rate: int = 44_100
    audio_channels: Tuple[int, ...] = (1, 2)
    # When set, image colors snap to this palette (nearest color).
    device_palette: Optional[Tuple[RGB, ...]] = None
