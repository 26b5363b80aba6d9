"""Batch asset transcoding.

Each asset is converted independently, so the batch fans out over a thread
pool. Results keep input order and the first failing asset (in input order)
decides which error is raised.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from multiprocessing import cpu_count
from pathlib import Path
from typing import Callable, List, Sequence

from ..constants import MAX_MEMBER_SIZE
from ..errors import asset_too_large, unsupported_asset
from ..logging import get_logger
from .audio import transcode_audio
from .images import transcode_image
from .limits import DeviceLimits

__all__ = [
    "IMAGE",
    "AUDIO",
    "RAW",
    "AssetSource",
    "AssetEntry",
    "detect_kind",
    "transcode_asset",
    "transcode_assets",
]

IMAGE = "image"
AUDIO = "audio"
RAW = "raw"

# Extensions already in a device format; embedded as-is.
RAW_EXTENSIONS = frozenset({".fff", ".ffi", ".ffz"})

DEFAULT_WORKERS = max(cpu_count() - 1, 1)


@dataclass(frozen=True, slots=True)
class AssetSource:
    name: str
    data: bytes
    kind: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class AssetEntry:
    name: str
    kind: str
    data: bytes


def detect_kind(path: Path, copy: bool = False) -> str:
    if copy:
        return RAW
    ext = path.suffix.lower()
    if ext == ".png":
        return IMAGE
    if ext == ".wav":
        return AUDIO
    if ext in RAW_EXTENSIONS:
        return RAW
    raise unsupported_asset(
        f"cannot infer asset kind from extension '{ext or path.name}' "
        "(use copy: true to embed verbatim)",
        {"path": str(path)},
    )


def transcode_asset(source: AssetSource, limits: DeviceLimits) -> AssetEntry:
    if not source.data:
        raise unsupported_asset(f"asset '{source.name}' is empty", {"name": source.name})
    if source.kind == IMAGE:
        data = transcode_image(source.data, limits)
    elif source.kind == AUDIO:
        data = transcode_audio(source.data, limits)
    elif source.kind == RAW:
        data = source.data
    else:
        raise unsupported_asset(
            f"unknown asset kind '{source.kind}'", {"name": source.name}
        )
    if len(data) > MAX_MEMBER_SIZE:
        raise asset_too_large(
            f"asset '{source.name}' is {len(data)} bytes, limit is {MAX_MEMBER_SIZE}",
            {"name": source.name, "size": len(data), "limit": MAX_MEMBER_SIZE},
        )
    return AssetEntry(source.name, source.kind, data)


def transcode_assets(
    sources: Sequence[AssetSource],
    limits: DeviceLimits,
    max_workers: int | None = None,
    on_done: Callable[[AssetEntry], None] | None = None,
) -> List[AssetEntry]:
    """Transcode ``sources`` in parallel, returning entries in input order."""
    if not sources:
        return []
    logger = get_logger("assets")
    workers = max_workers if max_workers is not None else DEFAULT_WORKERS
    results: List[AssetEntry] = []
    with ThreadPoolExecutor(max_workers=workers) as exe:
        futures = [exe.submit(transcode_asset, s, limits) for s in sources]
        try:
            for src, fut in zip(sources, futures):
                entry = fut.result()
                logger.debug(
                    "%s %s: %d -> %d bytes",
                    entry.kind,
                    entry.name,
                    len(src.data),
                    len(entry.data),
                )
                if on_done is not None:
                    on_done(entry)
                results.append(entry)
        except Exception:
            for fut in futures:
                fut.cancel()
            raise
    return results
