from __future__ import annotations

import hashlib
import stat
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization

from rompack.errors import ArchiveCorrupt, KeyNotFound, SchemaViolation
from rompack.signing import KeyStore, Signature, Signer, fingerprint, verify

AUTHOR = "lux"
DIGEST = hashlib.sha256(b"package blob").digest()


def _flip(data: bytes, bit: int) -> bytes:
    out = bytearray(data)
    out[bit // 8] ^= 1 << (bit % 8)
    return bytes(out)


def test_sign_then_verify(key_store: KeyStore):
    sig = Signer(key_store, AUTHOR).sign(DIGEST)
    assert sig.digest == DIGEST
    assert sig.public_key == key_store.load_public(AUTHOR)
    assert sig.key_fingerprint == fingerprint(sig.public_key)
    assert verify(DIGEST, sig.signature, sig.public_key)
    assert sig.is_valid_for(DIGEST)


def test_signing_is_deterministic(key_store: KeyStore):
    signer = Signer(key_store, AUTHOR)
    assert signer.sign(DIGEST) == signer.sign(DIGEST)


def test_any_digest_bit_flip_fails(key_store: KeyStore):
    sig = Signer(key_store, AUTHOR).sign(DIGEST)
    for bit in range(len(DIGEST) * 8):
        assert not verify(_flip(DIGEST, bit), sig.signature, sig.public_key)


def test_any_signature_bit_flip_fails(key_store: KeyStore):
    sig = Signer(key_store, AUTHOR).sign(DIGEST)
    for bit in range(len(sig.signature) * 8):
        assert not verify(DIGEST, _flip(sig.signature, bit), sig.public_key)


def test_verify_never_raises(key_store: KeyStore):
    sig = Signer(key_store, AUTHOR).sign(DIGEST)
    assert not verify(DIGEST, sig.signature, b"not a key")
    assert not verify(DIGEST[:-1], sig.signature, sig.public_key)
    assert not verify(DIGEST, b"", sig.public_key)


def test_missing_key_is_key_not_found(tmp_path: Path):
    with pytest.raises(KeyNotFound):
        Signer(KeyStore(tmp_path / "empty"), AUTHOR).sign(DIGEST)


def test_public_key_only_is_key_not_found(key_store: KeyStore):
    key_store.private_path(AUTHOR).unlink()
    with pytest.raises(KeyNotFound):
        Signer(key_store, AUTHOR).sign(DIGEST)


def test_key_files_are_pkcs1_der(key_store: KeyStore):
    priv = key_store.private_path(AUTHOR).read_bytes()
    pub = key_store.public_path(AUTHOR).read_bytes()
    key = serialization.load_der_private_key(priv, password=None)
    expected = key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.PKCS1
    )
    assert pub == expected
    assert key.key_size == 2048


def test_generate_refuses_overwrite(key_store: KeyStore):
    with pytest.raises(SchemaViolation):
        key_store.generate(AUTHOR)


def test_generate_rejects_bad_author(tmp_path: Path):
    with pytest.raises(SchemaViolation):
        KeyStore(tmp_path).generate("Bad Author")


def test_ensure_keypair_reuses_existing(key_store: KeyStore):
    before = key_store.load_public(AUTHOR)
    assert key_store.ensure_keypair(AUTHOR) == before


def test_remove(key_store: KeyStore):
    assert key_store.remove(AUTHOR)
    assert not key_store.has_keypair(AUTHOR)
    assert not key_store.remove(AUTHOR)


def test_signature_block_roundtrip(key_store: KeyStore):
    sig = Signer(key_store, AUTHOR).sign(DIGEST)
    raw = sig.encode()
    assert raw[:4] == b"RSG1"
    assert Signature.decode(raw) == sig


@pytest.mark.parametrize("cut", [0, 10, 70, -1])
def test_signature_block_truncation(key_store: KeyStore, cut):
    raw = Signer(key_store, AUTHOR).sign(DIGEST).encode()
    with pytest.raises(ArchiveCorrupt):
        Signature.decode(raw[:cut])


def test_signature_block_trailing_bytes(key_store: KeyStore):
    raw = Signer(key_store, AUTHOR).sign(DIGEST).encode()
    with pytest.raises(ArchiveCorrupt):
        Signature.decode(raw + b"\x00")


def test_wrong_fingerprint_is_invalid(key_store: KeyStore):
    sig = Signer(key_store, AUTHOR).sign(DIGEST)
    forged = Signature(sig.digest, b"\x00" * 32, sig.signature, sig.public_key)
    assert not forged.is_valid_for(DIGEST)


def test_export_public_and_private(key_store: KeyStore, tmp_path: Path):
    pub = key_store.export(AUTHOR, tmp_path / "out" / "lux.der")
    assert pub.read_bytes() == key_store.load_public(AUTHOR)
    assert stat.S_IMODE(pub.stat().st_mode) == 0o444
    priv = key_store.export(AUTHOR, tmp_path / "lux.priv.der", public=False)
    assert priv.read_bytes() == key_store.private_path(AUTHOR).read_bytes()
    assert stat.S_IMODE(priv.stat().st_mode) == 0o400


def test_export_refuses_existing_output(key_store: KeyStore, tmp_path: Path):
    (tmp_path / "taken.der").write_bytes(b"x")
    with pytest.raises(SchemaViolation):
        key_store.export(AUTHOR, tmp_path / "taken.der")
    with pytest.raises(SchemaViolation):
        key_store.export(AUTHOR, tmp_path)
    with pytest.raises(KeyNotFound):
        key_store.export("nobody", tmp_path / "nobody.der")


def test_add_private_key_stores_keypair(key_store: KeyStore, tmp_path: Path):
    raw = key_store.private_path(AUTHOR).read_bytes()
    other = KeyStore(tmp_path / "other")
    assert other.add("lux", raw) is True
    assert other.has_keypair("lux")
    assert other.load_public("lux") == key_store.load_public(AUTHOR)
    assert stat.S_IMODE(other.private_path("lux").stat().st_mode) == 0o600
    sig = Signer(other, "lux").sign(DIGEST)
    assert verify(DIGEST, sig.signature, key_store.load_public(AUTHOR))


def test_add_public_key_only(key_store: KeyStore, tmp_path: Path):
    other = KeyStore(tmp_path / "other")
    assert other.add("lux", key_store.load_public(AUTHOR)) is False
    assert other.load_public("lux") == key_store.load_public(AUTHOR)
    assert not other.has_keypair("lux")


def test_add_accepts_subject_public_key_info(key_store: KeyStore, tmp_path: Path):
    public = serialization.load_der_public_key(key_store.load_public(AUTHOR))
    spki = public.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    other = KeyStore(tmp_path / "other")
    other.add("lux", spki)
    # stored as PKCS#1 like generated keys
    assert other.load_public("lux") == key_store.load_public(AUTHOR)


@pytest.mark.parametrize("raw", [b"short", b"\x30" * 4096, b"\x30\x82" + b"\x00" * 100])
def test_add_rejects_bad_keys(tmp_path: Path, raw: bytes):
    store = KeyStore(tmp_path / "keys")
    with pytest.raises(SchemaViolation):
        store.add("lux", raw)
    assert not store.public_path("lux").exists()


def test_add_refuses_overwrite(key_store: KeyStore):
    with pytest.raises(SchemaViolation):
        key_store.add(AUTHOR, key_store.load_public(AUTHOR))
