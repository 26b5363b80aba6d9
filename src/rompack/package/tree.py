"""Install-layout directory: one file per member plus ``_sig``."""

from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

from ..constants import MAX_MEMBER_SIZE, SIG
from ..errors import archive_corrupt, io_failure, schema_violation
from ..signing import Signature
from .layout import Member, Package
from .staging import staged_dir

__all__ = ["write_install_tree", "read_install_tree"]


def write_install_tree(package: Package, target_dir: Path) -> Path:
    if package.signature is None:
        raise schema_violation(
            f"package {package.app_id} is unsigned", {"app": str(package.app_id)}
        )
    target_dir = Path(target_dir)
    with staged_dir(target_dir) as tmp:
        for m in package.members:
            (tmp / m.name).write_bytes(m.data)
        (tmp / SIG).write_bytes(package.signature.encode())
    return target_dir


def read_install_tree(source_dir: Path) -> Tuple[List[Member], Signature]:
    source_dir = Path(source_dir)
    members: List[Member] = []
    sig: Signature | None = None
    try:
        for path in sorted(source_dir.iterdir()):
            if not path.is_file():
                raise archive_corrupt(f"unexpected entry in {source_dir}: {path.name}")
            if path.stat().st_size > MAX_MEMBER_SIZE:
                raise archive_corrupt(f"member {path.name} exceeds size limit")
            data = path.read_bytes()
            if path.name == SIG:
                sig = Signature.decode(data)
            else:
                members.append(Member(path.name, data))
    except OSError as exc:
        raise io_failure(f"cannot read {source_dir}", exc) from exc
    if sig is None:
        raise archive_corrupt(f"{source_dir} has no {SIG}", {"path": str(source_dir)})
    return members, sig
