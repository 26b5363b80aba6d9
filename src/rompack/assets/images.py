"""Raster image transcoding into the device's indexed image layout.

Layout (little-endian)::

    u8  magic (0x21)
    u8  bits per pixel (1, 2, 4 or 8)
    u16 width
    u16 height
    u16 palette length
    u8  transparent index (0 when present, 0xFF when the image has none)
    palette length * (u8 r, u8 g, u8 b)
    height rows of packed indices, MSB first, each row padded to a byte

Quantization maps every pixel to the nearest palette color by squared RGB
distance; on equal distance the lowest palette index wins. A palette that
needs more entries than the device allows is a hard failure.
"""

from __future__ import annotations

import io
import struct
from typing import Dict, List, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from ..errors import asset_too_large, unsupported_asset
from .limits import RGB, DeviceLimits

__all__ = [
    "IMAGE_MAGIC",
    "IMAGE_HEADER",
    "NO_TRANSPARENCY",
    "nearest_color",
    "build_palette",
    "bits_per_pixel",
    "pack_rows",
    "transcode_image",
]

IMAGE_MAGIC = 0x21
IMAGE_HEADER = struct.Struct("<BBHHHB")
NO_TRANSPARENCY = 0xFF
# Pixels with alpha below this are transparent.
ALPHA_THRESHOLD = 128
TRANSPARENT_RGB: RGB = (0, 0, 0)


def nearest_color(color: RGB, palette: Sequence[RGB]) -> int:
    """Index of the closest palette entry; lowest index wins ties."""
    best_index = -1
    best_dist = -1
    r, g, b = color
    for i, (pr, pg, pb) in enumerate(palette):
        dist = (r - pr) ** 2 + (g - pg) ** 2 + (b - pb) ** 2
        if best_index < 0 or dist < best_dist:
            best_index = i
            best_dist = dist
            if dist == 0:
                break
    return best_index


def _check_size(width: int, height: int, limits: DeviceLimits) -> None:
    max_w = min(limits.max_image_width, 0xFFFF)
    max_h = min(limits.max_image_height, 0xFFFF)
    if width > max_w or height > max_h:
        raise asset_too_large(
            f"image is {width}x{height}, device allows at most {max_w}x{max_h}",
            {"width": width, "height": height},
        )


def _decode(data: bytes, limits: DeviceLimits) -> Image.Image:
    """Decode to RGBA, rejecting oversized images before any pixel data is read."""
    try:
        img = Image.open(io.BytesIO(data))
    except Image.DecompressionBombError as exc:
        # Pillow refuses to even open images this large
        raise asset_too_large(f"image exceeds the decoder pixel limit: {exc}") from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise unsupported_asset(f"cannot decode image: {exc}") from exc
    with img:
        _check_size(img.width, img.height, limits)
        try:
            img.load()
            return img.convert("RGBA")
        except (OSError, ValueError) as exc:
            raise unsupported_asset(f"cannot decode image: {exc}") from exc


def _split_pixels(rgba: bytes) -> Tuple[List[RGB | None], set]:
    pixels: List[RGB | None] = []
    opaque: set = set()
    for i in range(0, len(rgba), 4):
        if rgba[i + 3] < ALPHA_THRESHOLD:
            pixels.append(None)
        else:
            c = (rgba[i], rgba[i + 1], rgba[i + 2])
            pixels.append(c)
            opaque.add(c)
    return pixels, opaque


def build_palette(
    colors: set, has_transparency: bool, limits: DeviceLimits
) -> List[RGB]:
    """Opaque palette entries in a stable order (transparent slot excluded)."""
    if limits.device_palette is None:
        palette = sorted(colors)
    else:
        device = limits.device_palette
        used = sorted({nearest_color(c, device) for c in colors})
        palette = [device[i] for i in used]
    needed = len(palette) + (1 if has_transparency else 0)
    if needed > limits.max_palette_size:
        raise unsupported_asset(
            f"image needs {needed} palette entries, device allows "
            f"{limits.max_palette_size}",
            {"colors": needed, "limit": limits.max_palette_size},
        )
    return palette


def bits_per_pixel(palette_len: int) -> int:
    for bpp in (1, 2, 4, 8):
        if palette_len <= 1 << bpp:
            return bpp
    raise unsupported_asset(f"palette of {palette_len} entries cannot be indexed")


def pack_rows(indices: Sequence[int], width: int, height: int, bpp: int) -> bytes:
    out = bytearray()
    for y in range(height):
        acc = 0
        nbits = 0
        for idx in indices[y * width : (y + 1) * width]:
            acc = (acc << bpp) | idx
            nbits += bpp
            if nbits == 8:
                out.append(acc)
                acc = 0
                nbits = 0
        if nbits:
            out.append(acc << (8 - nbits))
    return bytes(out)


def transcode_image(data: bytes, limits: DeviceLimits) -> bytes:
    img = _decode(data, limits)
    width, height = img.size
    pixels, colors = _split_pixels(img.tobytes())
    has_transparency = any(p is None for p in pixels)
    palette = build_palette(colors, has_transparency, limits)
    # transparent slot, when present, is index 0
    base = 1 if has_transparency else 0
    transparent = 0 if has_transparency else NO_TRANSPARENCY
    lookup: Dict[RGB, int] = {c: base + nearest_color(c, palette) for c in colors}
    indices = [0 if p is None else lookup[p] for p in pixels]

    entries = ([TRANSPARENT_RGB] if has_transparency else []) + palette
    bpp = bits_per_pixel(len(entries))
    out = bytearray(
        IMAGE_HEADER.pack(IMAGE_MAGIC, bpp, width, height, len(entries), transparent)
    )
    for r, g, b in entries:
        out += bytes((r, g, b))
    out += pack_rows(indices, width, height, bpp)
    return bytes(out)
