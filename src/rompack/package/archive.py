"""Deterministic zip archives of signed packages.

Members are written in blob order with the signature block last. Every
entry gets the same timestamp and permissions, so the same package always
produces the same archive bytes.
"""

from __future__ import annotations

import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import List

from ..constants import BIN, MAX_MEMBER_SIZE, META, SIG
from ..errors import archive_corrupt, io_failure, schema_violation
from ..signing import Signature
from .layout import Member, Package
from .staging import staged_file

__all__ = ["ARCHIVE_DATE", "ArchiveContents", "archive_name", "write_archive", "read_archive"]

# Earliest timestamp a zip entry can carry.
ARCHIVE_DATE = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o644
_UNIX = 3


@dataclass(slots=True)
class ArchiveContents:
    members: List[Member]
    signature: Signature


def archive_name(package: Package) -> str:
    return f"{package.app_id}.zip"


def _info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=ARCHIVE_DATE)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = _UNIX
    info.external_attr = (0o100000 | _FILE_MODE) << 16
    return info


def write_archive(package: Package, path: Path) -> Path:
    if package.signature is None:
        raise schema_violation(
            f"package {package.app_id} is unsigned", {"app": str(package.app_id)}
        )
    path = Path(path)
    with staged_file(path) as tmp:
        with zipfile.ZipFile(tmp, "w") as zf:
            for m in package.members:
                zf.writestr(_info(m.name), m.data)
            zf.writestr(_info(SIG), package.signature.encode())
    return path


def read_archive(path: Path) -> ArchiveContents:
    path = Path(path)
    members: List[Member] = []
    sig_data: bytes | None = None
    seen = set()
    try:
        with zipfile.ZipFile(path, "r") as zf:
            for info in zf.infolist():
                name = info.filename
                if info.is_dir() or "/" in name or "\\" in name or name in (".", ".."):
                    raise archive_corrupt(
                        f"archive member '{name}' is not a flat file", {"name": name}
                    )
                if name in seen:
                    raise archive_corrupt(f"duplicate archive member '{name}'", {"name": name})
                seen.add(name)
                if info.file_size > MAX_MEMBER_SIZE:
                    raise archive_corrupt(
                        f"archive member '{name}' is {info.file_size} bytes",
                        {"name": name, "size": info.file_size},
                    )
                data = zf.read(info)
                if name == SIG:
                    sig_data = data
                else:
                    members.append(Member(name, data))
    except FileNotFoundError as exc:
        raise io_failure(f"cannot open archive {path}", exc) from exc
    except (
        zipfile.BadZipFile,
        zipfile.LargeZipFile,
        EOFError,
        ValueError,
        NotImplementedError,
        zlib.error,
    ) as exc:
        raise archive_corrupt(f"{path.name} is not a valid archive: {exc}") from exc
    except OSError as exc:
        raise io_failure(f"cannot read archive {path}", exc) from exc

    for required in (META, BIN, SIG):
        if required not in seen:
            raise archive_corrupt(
                f"archive is missing required member '{required}'", {"name": required}
            )
    return ArchiveContents(members, Signature.decode(sig_data))
