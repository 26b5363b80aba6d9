from __future__ import annotations

import json
from pathlib import Path

import pytest

from rompack.cli import build_parser, main
from rompack.signing import KeyStore
from wasm_helper import game_module

CONFIG = """\
author_id: lux
app_id: snake
app_name: Snake
files:
  font: font.fff
"""


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "rompack.yaml").write_text(CONFIG)
    (root / "main.wasm").write_bytes(game_module())
    (root / "font.fff").write_bytes(b"FONTDATA")
    return root


def _run(vfs: Path, *args: str) -> int:
    return main(["-r", "silent", "--vfs", str(vfs), *args])


def test_parser_defaults():
    args = build_parser().parse_args(["build"])
    assert args.root == Path(".")
    assert args.reporter == "plain"
    assert not args.no_sign and not args.no_install


def test_build_list_remove(project, tmp_path, key_store, capsys):
    vfs = tmp_path / "vfs"
    assert _run(vfs, "build", str(project), "--keys", str(key_store.root)) == 0
    capsys.readouterr()
    assert _run(vfs, "list") == 0
    assert capsys.readouterr().out.splitlines() == ["lux.snake"]
    assert _run(vfs, "remove", "lux.snake") == 0
    assert _run(vfs, "remove", "lux.snake") == 0
    capsys.readouterr()
    _run(vfs, "list")
    assert capsys.readouterr().out == ""


def test_build_archive_then_inspect(project, tmp_path, key_store, capsys):
    vfs = tmp_path / "vfs"
    archive = tmp_path / "snake.zip"
    code = _run(
        vfs, "build", str(project), "--keys", str(key_store.root), "--archive", str(archive)
    )
    assert code == 0
    capsys.readouterr()
    assert _run(vfs, "inspect", str(archive)) == 0
    info = json.loads(capsys.readouterr().out)
    assert info["app"] == "lux.snake"
    assert info["signature"]["valid"] is True


def test_export_and_import(project, tmp_path, key_store):
    vfs = tmp_path / "vfs"
    _run(vfs, "build", str(project), "--keys", str(key_store.root))
    assert _run(vfs, "export", "lux.snake", "-o", str(tmp_path)) == 0
    assert (tmp_path / "lux.snake.zip").is_file()
    other = tmp_path / "other"
    assert _run(other, "import", str(tmp_path / "lux.snake.zip")) == 0
    assert (other / "roms" / "lux" / "snake" / "_sig").is_file()


def test_errors_exit_with_one(project, tmp_path):
    vfs = tmp_path / "vfs"
    assert _run(vfs, "remove", "not-an-id") == 1
    assert _run(vfs, "build", str(project), "--keys", str(tmp_path / "nokeys")) == 1
    assert _run(vfs, "import", str(tmp_path / "missing.zip")) == 1
    assert _run(vfs, "export", "lux.snake") == 1


def test_no_sign_skips_install(project, tmp_path):
    vfs = tmp_path / "vfs"
    assert _run(vfs, "build", str(project), "--no-sign") == 0
    assert not (vfs / "roms").exists()


def test_keys_new_and_rm(tmp_path):
    keys = tmp_path / "keys"
    assert _run(tmp_path / "vfs", "keys", "--keys", str(keys), "new", "ada", "--bits", "1024") == 0
    assert KeyStore(keys).has_keypair("ada")
    # second generation refuses to overwrite
    assert _run(tmp_path / "vfs", "keys", "--keys", str(keys), "new", "ada", "--bits", "1024") == 1
    assert _run(tmp_path / "vfs", "keys", "--keys", str(keys), "rm", "ada") == 0
    assert not KeyStore(keys).has_keypair("ada")


def test_keys_export_and_add(tmp_path, key_store):
    vfs = tmp_path / "vfs"
    keys = ["keys", "--keys", str(key_store.root)]
    pub = tmp_path / "lux.der"
    assert _run(vfs, *keys, "pub", "lux", "-o", str(pub)) == 0
    assert pub.read_bytes() == key_store.load_public("lux")
    # an existing output is never overwritten
    assert _run(vfs, *keys, "pub", "lux", "-o", str(pub)) == 1
    priv = tmp_path / "lux-priv.der"
    assert _run(vfs, *keys, "priv", "lux", "-o", str(priv)) == 0

    # added into the vfs key store, author taken from the file name
    assert _run(vfs, "keys", "add", str(pub)) == 0
    store = KeyStore(vfs / "sys")
    assert store.load_public("lux") == key_store.load_public("lux")
    assert not store.has_keypair("lux")
    assert _run(vfs, "keys", "rm", "lux") == 0
    assert _run(vfs, "keys", "add", str(priv), "--author", "lux") == 0
    assert store.has_keypair("lux")
    assert _run(vfs, "keys", "add", str(tmp_path / "missing.der")) == 1


def test_keys_pub_default_output(tmp_path, key_store, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert _run(tmp_path / "vfs", "keys", "--keys", str(key_store.root), "pub", "lux") == 0
    assert (tmp_path / "lux.der").read_bytes() == key_store.load_public("lux")
