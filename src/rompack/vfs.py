"""Host-side virtual filesystem mirroring device storage.

Layout under the root::

    roms/<author>/<app>/   installed packages (members + _sig)
    data/                  per-app writable data
    sys/pub, sys/priv      author keypairs (the default key store)
    sys/new-app            last installed app id
    sys/launcher           installed launcher id

The store assumes one process at a time; there is no locking.
"""

from __future__ import annotations

import os
from contextlib import ExitStack
from pathlib import Path
from typing import List

from .constants import SIG
from .errors import io_failure, schema_violation, signature_mismatch
from .logging import get_logger
from .manifest import AppId, check_id, encode_short_id
from .package.archive import read_archive, write_archive
from .package.layout import Package, encode_blob, package_from_members
from .package.staging import remove_tree, staged_file
from .package.tree import read_install_tree, write_install_tree
from .signing import KeyStore, digest as sha256_digest

__all__ = ["VFS_ENV", "VfsStore", "default_vfs_root"]

VFS_ENV = "ROMPACK_VFS"
LOCAL_VFS = ".rompack"


def default_vfs_root() -> Path:
    """``./.rompack`` if present, else ``$ROMPACK_VFS``, else the user data dir."""
    local = Path.cwd() / LOCAL_VFS
    if local.is_dir():
        return local
    env = os.environ.get(VFS_ENV)
    if env:
        return Path(env)
    return Path.home() / ".local" / "share" / "rompack"


class VfsStore:
    def __init__(self, root: Path):
        self.root = Path(root)
        self.logger = get_logger("vfs")

    @property
    def roms_dir(self) -> Path:
        return self.root / "roms"

    @property
    def sys_dir(self) -> Path:
        return self.root / "sys"

    @property
    def key_store(self) -> KeyStore:
        return KeyStore(self.sys_dir)

    def app_dir(self, app: AppId) -> Path:
        return self.roms_dir / check_id(app.author_id, "author_id") / check_id(app.app_id, "app_id")

    def init(self) -> None:
        try:
            for sub in ("roms", "data", "sys/pub", "sys/priv"):
                (self.root / sub).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise io_failure(f"cannot initialize VFS at {self.root}", exc) from exc

    def install(self, package: Package) -> Path:
        """Install a signed package.

        The ``sys`` records are written to staging files first and renamed
        right after the app tree is promoted. A failure before that point
        leaves both the previous install and the records untouched.
        """
        self.init()
        app = package.app_id
        records = ["new-app"]
        if package.manifest.launcher:
            records.append("launcher")
        with ExitStack() as stack:
            for name in records:
                tmp = stack.enter_context(staged_file(self.sys_dir / name))
                tmp.write_bytes(encode_short_id(app))
            target = write_install_tree(package, self.app_dir(app))
        self.logger.info("installed %s (%d bytes)", app, package.size)
        return target

    def remove(self, app: AppId) -> bool:
        target = self.app_dir(app)
        if not target.exists():
            return False
        try:
            remove_tree(target)
            author_dir = target.parent
            if author_dir.is_dir() and not any(author_dir.iterdir()):
                author_dir.rmdir()
        except OSError as exc:
            raise io_failure(f"cannot remove {app}", exc) from exc
        self.logger.info("removed %s", app)
        return True

    def list(self) -> List[AppId]:
        if not self.roms_dir.is_dir():
            return []
        apps: List[AppId] = []
        try:
            for author_dir in self.roms_dir.iterdir():
                if not author_dir.is_dir() or author_dir.name.startswith("."):
                    continue
                for app_dir in author_dir.iterdir():
                    if app_dir.is_dir() and not app_dir.name.startswith("."):
                        if (app_dir / SIG).is_file():
                            apps.append(AppId(author_dir.name, app_dir.name))
        except OSError as exc:
            raise io_failure(f"cannot list {self.roms_dir}", exc) from exc
        return sorted(apps)

    def is_installed(self, app: AppId) -> bool:
        return (self.app_dir(app) / SIG).is_file()

    def load(self, app: AppId) -> Package:
        if not self.is_installed(app):
            raise schema_violation(f"{app} is not installed", {"app": str(app)})
        members, sig = read_install_tree(self.app_dir(app))
        return package_from_members(members, sig)

    def export(self, app: AppId, out_path: Path | None = None) -> Path:
        package = self.load(app)
        if out_path is None:
            out_path = Path.cwd() / f"{app}.zip"
        elif Path(out_path).is_dir():
            out_path = Path(out_path) / f"{app}.zip"
        path = write_archive(package, Path(out_path))
        self.logger.info("exported %s to %s", app, path)
        return path

    def import_archive(self, path: Path) -> Package:
        """Validate an archive fully, then install it.

        Nothing under the root is touched unless every check passes.
        """
        contents = read_archive(path)
        sig = contents.signature
        actual = sha256_digest(encode_blob(contents.members))
        if actual != sig.digest:
            raise signature_mismatch(
                "package digest does not match the signed digest",
                {"expected": sig.digest.hex(), "actual": actual.hex()},
            )
        if not sig.is_valid_for(actual):
            raise signature_mismatch(
                "signature does not verify against the declared public key",
                {"fingerprint": sig.key_fingerprint.hex()},
            )
        package = package_from_members(contents.members, sig)
        self.install(package)
        return package
