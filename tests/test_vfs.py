from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from rompack.errors import IOFailure, SchemaViolation, SignatureMismatch
from rompack.manifest import AppId, decode_short_id
from rompack.vfs import VFS_ENV, VfsStore, default_vfs_root

SNAKE = AppId("lux", "snake")


def _snapshot(root: Path):
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def test_init_creates_layout(tmp_path: Path):
    vfs = VfsStore(tmp_path / "vfs")
    vfs.init()
    for sub in ("roms", "data", "sys/pub", "sys/priv"):
        assert (vfs.root / sub).is_dir()


def test_install_list_load(tmp_path: Path, package_factory):
    vfs = VfsStore(tmp_path / "vfs")
    package = package_factory()
    target = vfs.install(package)
    assert target == vfs.root / "roms" / "lux" / "snake"
    assert sorted(p.name for p in target.iterdir()) == ["_bin", "_meta", "_sig", "beep", "font"]
    assert vfs.list() == [SNAKE]
    assert vfs.load(SNAKE).digest == package.digest
    assert decode_short_id((vfs.root / "sys" / "new-app").read_bytes()) == SNAKE
    assert not (vfs.root / "sys" / "launcher").exists()


def test_install_launcher_records_it(tmp_path: Path, package_factory):
    vfs = VfsStore(tmp_path / "vfs")
    vfs.install(package_factory(launcher=True, app_id="launcher"))
    assert decode_short_id((vfs.root / "sys" / "launcher").read_bytes()) == AppId("lux", "launcher")


def test_install_overwrites(tmp_path: Path, package_factory):
    vfs = VfsStore(tmp_path / "vfs")
    vfs.install(package_factory(version=1))
    second = package_factory(version=2)
    vfs.install(second)
    assert vfs.load(SNAKE).manifest.version == 2
    assert sorted(p.name for p in (vfs.root / "roms" / "lux").iterdir()) == ["snake"]


def test_unsigned_install_is_rejected(tmp_path: Path, package_factory):
    vfs = VfsStore(tmp_path / "vfs")
    with pytest.raises(SchemaViolation):
        vfs.install(package_factory(sign=False))
    assert vfs.list() == []


def test_list_is_sorted(tmp_path: Path, package_factory):
    vfs = VfsStore(tmp_path / "vfs")
    for app in ("zeta", "alpha", "mid"):
        vfs.install(package_factory(app_id=app))
    assert [a.app_id for a in vfs.list()] == ["alpha", "mid", "zeta"]


def test_remove_is_noop_when_absent(tmp_path: Path, package_factory):
    vfs = VfsStore(tmp_path / "vfs")
    assert vfs.remove(SNAKE) is False
    vfs.install(package_factory())
    assert vfs.remove(SNAKE) is True
    assert vfs.list() == []
    assert not (vfs.root / "roms" / "lux").exists()
    assert vfs.remove(SNAKE) is False


def test_export_import_roundtrip(tmp_path: Path, package_factory):
    src = VfsStore(tmp_path / "src")
    package = package_factory()
    src.install(package)
    archive = src.export(SNAKE, tmp_path)
    assert archive.name == "lux.snake.zip"

    dst = VfsStore(tmp_path / "dst")
    imported = dst.import_archive(archive)
    assert imported.digest == package.digest
    assert dst.load(SNAKE).digest == package.digest
    assert _snapshot(dst.root / "roms") == _snapshot(src.root / "roms")


def _tamper(src: Path, dst: Path, member: str, offset: int) -> Path:
    with zipfile.ZipFile(src) as zin, zipfile.ZipFile(dst, "w") as zout:
        for info in zin.infolist():
            data = zin.read(info)
            if info.filename == member:
                raw = bytearray(data)
                raw[offset] ^= 0x01
                data = bytes(raw)
            zout.writestr(info.filename, data)
    return dst


def test_tampered_manifest_is_rejected_untouched(tmp_path: Path, package_factory):
    src = VfsStore(tmp_path / "src")
    src.install(package_factory())
    archive = src.export(SNAKE, tmp_path / "good.zip")
    # first byte of the display name
    bad = _tamper(archive, tmp_path / "bad.zip", "_meta", 40)

    fresh = VfsStore(tmp_path / "fresh")
    with pytest.raises(SignatureMismatch):
        fresh.import_archive(bad)
    assert not fresh.root.exists()

    before = _snapshot(src.root)
    with pytest.raises(SignatureMismatch):
        src.import_archive(bad)
    assert _snapshot(src.root) == before


def test_tampered_asset_is_rejected(tmp_path: Path, package_factory):
    src = VfsStore(tmp_path / "src")
    src.install(package_factory())
    archive = src.export(SNAKE, tmp_path / "good.zip")
    bad = _tamper(archive, tmp_path / "bad.zip", "font", 0)
    with pytest.raises(SignatureMismatch):
        VfsStore(tmp_path / "fresh").import_archive(bad)


def test_tampered_signature_is_rejected(tmp_path: Path, package_factory):
    src = VfsStore(tmp_path / "src")
    src.install(package_factory())
    archive = src.export(SNAKE, tmp_path / "good.zip")
    # a byte inside the RSA signature itself
    bad = _tamper(archive, tmp_path / "bad.zip", "_sig", 100)
    with pytest.raises(SignatureMismatch):
        VfsStore(tmp_path / "fresh").import_archive(bad)


def test_default_root_resolution(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(VFS_ENV, str(tmp_path / "env-vfs"))
    assert default_vfs_root() == tmp_path / "env-vfs"
    (tmp_path / ".rompack").mkdir()
    assert default_vfs_root() == tmp_path / ".rompack"
    monkeypatch.delenv(VFS_ENV)
    (tmp_path / ".rompack").rmdir()
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    assert default_vfs_root() == tmp_path / "home" / ".local" / "share" / "rompack"


def test_load_missing_app(tmp_path: Path):
    with pytest.raises(SchemaViolation):
        VfsStore(tmp_path / "vfs").load(SNAKE)


def test_failed_tree_write_keeps_previous_records(tmp_path: Path, package_factory, monkeypatch):
    vfs = VfsStore(tmp_path / "vfs")
    vfs.install(package_factory(version=1))
    before = _snapshot(vfs.root)

    def fail(package, target_dir):
        raise OSError("disk full")

    monkeypatch.setattr("rompack.vfs.write_install_tree", fail)
    with pytest.raises(IOFailure):
        vfs.install(package_factory(version=2, app_id="other"))
    assert _snapshot(vfs.root) == before
    assert sorted(p.name for p in (vfs.root / "sys").iterdir()) == ["new-app", "priv", "pub"]


def test_failed_record_write_keeps_previous_install(tmp_path: Path, package_factory, monkeypatch):
    vfs = VfsStore(tmp_path / "vfs")
    vfs.install(package_factory(version=1))
    before = _snapshot(vfs.root)

    def fail(app):
        raise ValueError("bad id")

    monkeypatch.setattr("rompack.vfs.encode_short_id", fail)
    with pytest.raises(ValueError):
        vfs.install(package_factory(version=2))
    assert _snapshot(vfs.root) == before
    assert vfs.load(SNAKE).manifest.version == 1
