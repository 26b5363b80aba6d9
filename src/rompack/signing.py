"""Package signing.

Packages are signed with RSA PKCS#1 v1.5 over the SHA-256 package digest
(the digest is passed as a prehash, so the same hash covers both). Keys are
stored per author as PKCS#1 DER files in a key store directory::

    <root>/priv/<author>    private key
    <root>/pub/<author>     public key
"""

from __future__ import annotations

import hashlib
import os
import struct
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils

from .errors import archive_corrupt, io_failure, key_not_found, schema_violation
from .logging import get_logger
from .manifest import check_id
from .package.staging import staged_file

__all__ = [
    "SIGNATURE_MAGIC",
    "DIGEST_SIZE",
    "DEFAULT_KEY_SIZE",
    "Signature",
    "KeyStore",
    "Signer",
    "digest",
    "fingerprint",
    "verify",
]

SIGNATURE_MAGIC = b"RSG1"
DIGEST_SIZE = 32
DEFAULT_KEY_SIZE = 2048
# bounds on an added key file
MIN_KEY_FILE = 20
MAX_KEY_FILE = 2048

_SIG_HEAD = struct.Struct("<4s32s32sH")
_U16 = struct.Struct("<H")


def digest(blob: bytes) -> bytes:
    return hashlib.sha256(blob).digest()


def fingerprint(public_key_der: bytes) -> bytes:
    return hashlib.sha256(public_key_der).digest()


def _scheme():
    return padding.PKCS1v15(), utils.Prehashed(hashes.SHA256())


@dataclass(frozen=True, slots=True)
class Signature:
    digest: bytes
    key_fingerprint: bytes
    signature: bytes
    public_key: bytes

    def encode(self) -> bytes:
        if len(self.digest) != DIGEST_SIZE or len(self.key_fingerprint) != DIGEST_SIZE:
            raise schema_violation("signature digest and fingerprint must be 32 bytes")
        if len(self.signature) > 0xFFFF or len(self.public_key) > 0xFFFF:
            raise schema_violation("signature or public key too large for block")
        return b"".join(
            (
                _SIG_HEAD.pack(
                    SIGNATURE_MAGIC,
                    self.digest,
                    self.key_fingerprint,
                    len(self.signature),
                ),
                self.signature,
                _U16.pack(len(self.public_key)),
                self.public_key,
            )
        )

    @classmethod
    def decode(cls, data: bytes) -> "Signature":
        if len(data) < _SIG_HEAD.size:
            raise archive_corrupt("signature block is truncated")
        magic, dig, fp, sig_len = _SIG_HEAD.unpack_from(data, 0)
        if magic != SIGNATURE_MAGIC:
            raise archive_corrupt("bad signature block magic", {"magic": magic.hex()})
        pos = _SIG_HEAD.size
        sig = data[pos : pos + sig_len]
        pos += sig_len
        if len(sig) != sig_len or pos + _U16.size > len(data):
            raise archive_corrupt("signature block is truncated")
        (key_len,) = _U16.unpack_from(data, pos)
        pos += _U16.size
        key = data[pos : pos + key_len]
        if len(key) != key_len or pos + key_len != len(data):
            raise archive_corrupt("signature block has a bad public key length")
        return cls(dig, fp, sig, key)

    def is_valid_for(self, blob_digest: bytes) -> bool:
        """Digest matches, fingerprint matches the key and the signature verifies."""
        return (
            self.digest == blob_digest
            and self.key_fingerprint == fingerprint(self.public_key)
            and verify(blob_digest, self.signature, self.public_key)
        )


def verify(digest: bytes, signature: bytes, public_key: bytes) -> bool:
    """Check ``signature`` over ``digest``; returns False on any failure."""
    try:
        key = serialization.load_der_public_key(public_key)
        if not isinstance(key, rsa.RSAPublicKey):
            return False
        key.verify(signature, digest, *_scheme())
    except (InvalidSignature, UnsupportedAlgorithm, ValueError, TypeError):
        return False
    return True


class KeyStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    def private_path(self, author_id: str) -> Path:
        return self.root / "priv" / check_id(author_id, "author_id")

    def public_path(self, author_id: str) -> Path:
        return self.root / "pub" / check_id(author_id, "author_id")

    def has_keypair(self, author_id: str) -> bool:
        return self.private_path(author_id).is_file() and self.public_path(author_id).is_file()

    def _read(self, path: Path, author_id: str) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise key_not_found(author_id) from exc
        except OSError as exc:
            raise io_failure(f"cannot read key {path}", exc) from exc

    def load_private(self, author_id: str) -> rsa.RSAPrivateKey:
        raw = self._read(self.private_path(author_id), author_id)
        try:
            key = serialization.load_der_private_key(raw, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise schema_violation(
                f"private key for '{author_id}' is not a valid RSA DER key"
            ) from exc
        if not isinstance(key, rsa.RSAPrivateKey):
            raise schema_violation(f"private key for '{author_id}' is not RSA")
        return key

    def load_public(self, author_id: str) -> bytes:
        """Public key as PKCS#1 DER."""
        return self._read(self.public_path(author_id), author_id)

    def generate(self, author_id: str, key_size: int = DEFAULT_KEY_SIZE) -> bytes:
        """Create and persist a keypair; returns the public key DER."""
        self._refuse_existing(author_id)
        key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        pub_der = self._write_keys(author_id, key.public_key(), private=key)
        get_logger("keys").info(
            "generated %d-bit key for %s (fingerprint %s)",
            key_size,
            author_id,
            fingerprint(pub_der).hex()[:16],
        )
        return pub_der

    def _refuse_existing(self, author_id: str) -> None:
        if self.private_path(author_id).exists() or self.public_path(author_id).exists():
            raise schema_violation(
                f"a key for '{author_id}' already exists", {"author_id": author_id}
            )

    def _write_keys(
        self,
        author_id: str,
        public: rsa.RSAPublicKey,
        private: rsa.RSAPrivateKey | None = None,
    ) -> bytes:
        if private is not None:
            priv_der = private.private_bytes(
                serialization.Encoding.DER,
                serialization.PrivateFormat.TraditionalOpenSSL,
                serialization.NoEncryption(),
            )
            with staged_file(self.private_path(author_id)) as tmp:
                tmp.write_bytes(priv_der)
                os.chmod(tmp, 0o600)
        pub_der = public.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.PKCS1)
        with staged_file(self.public_path(author_id)) as tmp:
            tmp.write_bytes(pub_der)
        return pub_der

    def add(self, author_id: str, raw: bytes) -> bool:
        """Store a DER encoded RSA key for ``author_id``.

        A private key is stored along with its public half. A public key is
        stored alone, which is enough to verify the author's packages.
        Returns True when ``raw`` held a private key.
        """
        check_id(author_id, "author_id")
        if len(raw) < MIN_KEY_FILE:
            raise schema_violation(f"key for '{author_id}' is too small ({len(raw)} bytes)")
        if len(raw) > MAX_KEY_FILE:
            raise schema_violation(f"key for '{author_id}' is too big ({len(raw)} bytes)")
        self._refuse_existing(author_id)
        try:
            private = serialization.load_der_private_key(raw, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm):
            private = None
        if private is not None:
            if not isinstance(private, rsa.RSAPrivateKey):
                raise schema_violation(f"key for '{author_id}' is not RSA")
            public = private.public_key()
        else:
            try:
                public = serialization.load_der_public_key(raw)
            except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
                raise schema_violation(
                    f"key for '{author_id}' is not a valid RSA DER key"
                ) from exc
            if not isinstance(public, rsa.RSAPublicKey):
                raise schema_violation(f"key for '{author_id}' is not RSA")
        pub_der = self._write_keys(author_id, public, private=private)
        get_logger("keys").info(
            "added %s key for %s (fingerprint %s)",
            "private" if private is not None else "public",
            author_id,
            fingerprint(pub_der).hex()[:16],
        )
        return private is not None

    def export(self, author_id: str, output: Path, public: bool = True) -> Path:
        """Copy a stored key to a new read-only file at ``output``."""
        output = Path(output)
        if output.is_dir():
            raise schema_violation(f"output path {output} is a directory")
        if output.exists():
            raise schema_violation(f"output path {output} already exists")
        if public:
            raw = self.load_public(author_id)
        else:
            raw = self._read(self.private_path(author_id), author_id)
        with staged_file(output) as tmp:
            tmp.write_bytes(raw)
            os.chmod(tmp, 0o444 if public else 0o400)
        get_logger("keys").info(
            "exported %s key for %s to %s", "public" if public else "private", author_id, output
        )
        return output

    def ensure_keypair(self, author_id: str, key_size: int = DEFAULT_KEY_SIZE) -> bytes:
        if self.has_keypair(author_id):
            return self.load_public(author_id)
        return self.generate(author_id, key_size)

    def remove(self, author_id: str) -> bool:
        removed = False
        for path in (self.private_path(author_id), self.public_path(author_id)):
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise io_failure(f"cannot remove key {path}", exc) from exc
        return removed


class Signer:
    def __init__(self, key_store: KeyStore, author_id: str):
        self.key_store = key_store
        self.author_id = author_id

    def sign(self, digest: bytes) -> Signature:
        if len(digest) != DIGEST_SIZE:
            raise schema_violation(f"digest must be {DIGEST_SIZE} bytes, got {len(digest)}")
        if not self.key_store.has_keypair(self.author_id):
            raise key_not_found(self.author_id)
        key = self.key_store.load_private(self.author_id)
        public_der = self.key_store.load_public(self.author_id)
        sig = key.sign(digest, *_scheme())
        return Signature(digest, fingerprint(public_der), sig, public_der)
