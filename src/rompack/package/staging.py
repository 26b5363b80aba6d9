"""Staged writes with atomic promotion.

Everything persistent is first written to a temporary sibling of its final
path and renamed into place only once complete. On any failure the
temporary path is removed, so the final path holds either the previous
state or nothing.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..errors import io_failure
from ..logging import get_logger

__all__ = ["staged_dir", "staged_file", "remove_tree"]

# mkdtemp/mkstemp create owner-only paths; promoted paths get the usual modes.
DIR_MODE = 0o755
FILE_MODE = 0o644


def remove_tree(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _discard(path: Path) -> None:
    try:
        remove_tree(path)
    except OSError as exc:
        get_logger("staging").warning("could not remove staging path %s: %s", path, exc)


@contextmanager
def staged_dir(final: Path) -> Iterator[Path]:
    """Yield an empty directory that replaces ``final`` on success."""
    final = Path(final)
    try:
        final.parent.mkdir(parents=True, exist_ok=True)
        tmp = Path(tempfile.mkdtemp(prefix=f".{final.name}.", suffix=".tmp", dir=final.parent))
        os.chmod(tmp, DIR_MODE)
    except OSError as exc:
        raise io_failure(f"cannot create staging directory for {final}", exc) from exc
    try:
        yield tmp
        if final.exists():
            old = Path(tempfile.mkdtemp(prefix=f".{final.name}.", suffix=".old", dir=final.parent))
            os.replace(final, old)
            try:
                os.replace(tmp, final)
            except OSError:
                os.replace(old, final)
                raise
            _discard(old)
        else:
            os.replace(tmp, final)
    except OSError as exc:
        _discard(tmp)
        raise io_failure(f"cannot write {final}", exc) from exc
    except BaseException:
        _discard(tmp)
        raise


@contextmanager
def staged_file(final: Path) -> Iterator[Path]:
    """Yield a temporary file path that replaces ``final`` on success."""
    final = Path(final)
    try:
        final.parent.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=f".{final.name}.", suffix=".tmp", dir=final.parent)
        os.close(fd)
        os.chmod(name, FILE_MODE)
    except OSError as exc:
        raise io_failure(f"cannot create staging file for {final}", exc) from exc
    tmp = Path(name)
    try:
        yield tmp
        os.replace(tmp, final)
    except OSError as exc:
        _discard(tmp)
        raise io_failure(f"cannot write {final}", exc) from exc
    except BaseException:
        _discard(tmp)
        raise
