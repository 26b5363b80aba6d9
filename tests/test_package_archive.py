from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from rompack.errors import ArchiveCorrupt, SchemaViolation
from rompack.package.archive import ARCHIVE_DATE, archive_name, read_archive, write_archive


def test_archive_is_deterministic(tmp_path: Path, package_factory):
    package = package_factory()
    a = write_archive(package, tmp_path / "a.zip")
    b = write_archive(package_factory(), tmp_path / "b.zip")
    assert a.read_bytes() == b.read_bytes()


def test_archive_member_order_and_metadata(tmp_path: Path, package_factory):
    path = write_archive(package_factory(), tmp_path / "x.zip")
    with zipfile.ZipFile(path) as zf:
        infos = zf.infolist()
    assert [i.filename for i in infos] == ["_bin", "_meta", "beep", "font", "_sig"]
    for info in infos:
        assert info.date_time == ARCHIVE_DATE
        assert info.compress_type == zipfile.ZIP_DEFLATED
        assert info.extra == b""


def test_read_archive_roundtrip(tmp_path: Path, package_factory):
    package = package_factory()
    contents = read_archive(write_archive(package, tmp_path / "x.zip"))
    assert contents.members == package.members
    assert contents.signature == package.signature


def test_archive_name(package_factory):
    assert archive_name(package_factory()) == "lux.snake.zip"


def test_unsigned_package_cannot_be_archived(tmp_path: Path, package_factory):
    with pytest.raises(SchemaViolation):
        write_archive(package_factory(sign=False), tmp_path / "x.zip")
    assert not (tmp_path / "x.zip").exists()


def test_not_a_zip(tmp_path: Path):
    path = tmp_path / "junk.zip"
    path.write_bytes(b"PK\x03\x04 definitely broken")
    with pytest.raises(ArchiveCorrupt):
        read_archive(path)


def _rewrite(src: Path, dst: Path, drop=(), extra=()):
    with zipfile.ZipFile(src) as zin, zipfile.ZipFile(dst, "w") as zout:
        for info in zin.infolist():
            if info.filename not in drop:
                zout.writestr(info.filename, zin.read(info))
        for name, data in extra:
            zout.writestr(name, data)
    return dst


@pytest.mark.parametrize("missing", ["_meta", "_bin", "_sig"])
def test_missing_required_member(tmp_path: Path, package_factory, missing):
    src = write_archive(package_factory(), tmp_path / "x.zip")
    broken = _rewrite(src, tmp_path / "y.zip", drop=(missing,))
    with pytest.raises(ArchiveCorrupt):
        read_archive(broken)


def test_nested_member_rejected(tmp_path: Path, package_factory):
    src = write_archive(package_factory(), tmp_path / "x.zip")
    broken = _rewrite(src, tmp_path / "y.zip", extra=(("../evil", b"x"),))
    with pytest.raises(ArchiveCorrupt):
        read_archive(broken)


def test_truncated_signature_block(tmp_path: Path, package_factory):
    src = write_archive(package_factory(), tmp_path / "x.zip")
    broken = _rewrite(src, tmp_path / "y.zip", drop=("_sig",), extra=(("_sig", b"RSG1"),))
    with pytest.raises(ArchiveCorrupt):
        read_archive(broken)
