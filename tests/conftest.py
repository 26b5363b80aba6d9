from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from rompack.assets.transcoder import AssetEntry
from rompack.config import ProjectConfig
from rompack.module.postprocess import postprocess_module
from rompack.package.layout import assemble_package
from rompack.reporting import SilentReporter, set_reporter
from rompack.signing import KeyStore, Signer
from wasm_helper import game_module

AUTHOR = "lux"


@pytest.fixture(autouse=True)
def _silent_reporter():
    set_reporter(SilentReporter())
    yield


@pytest.fixture(scope="session")
def _key_template(tmp_path_factory) -> Path:
    # RSA generation is slow; create one keypair per session and copy it.
    root = tmp_path_factory.mktemp("keys")
    KeyStore(root).generate(AUTHOR)
    return root


@pytest.fixture
def key_store(tmp_path: Path, _key_template: Path) -> KeyStore:
    root = tmp_path / "sys"
    shutil.copytree(_key_template, root)
    return KeyStore(root)


@pytest.fixture
def project_config():
    def make(**overrides) -> ProjectConfig:
        fields = dict(
            app_id="snake",
            author_id=AUTHOR,
            app_name="Snake",
            author_name="Lux",
            version=3,
        )
        fields.update(overrides)
        return ProjectConfig(**fields)

    return make


@pytest.fixture
def package_factory(key_store, project_config):
    """Build (and by default sign) a small package in memory."""

    def make(sign: bool = True, assets=None, **overrides):
        if assets is None:
            assets = [
                AssetEntry("font", "raw", b"FONTDATA"),
                AssetEntry("beep", "audio", b"\x31\x02\x44\xac\x00\x00"),
            ]
        module = postprocess_module(game_module())
        package = assemble_package(project_config(**overrides), module, assets)
        if sign:
            package = package.attach(Signer(key_store, AUTHOR).sign(package.digest))
        return package

    return make
