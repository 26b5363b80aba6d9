"""Fixed-schema binary manifest.

The manifest is the only structured record inside a package. Its layout is
fixed so the device can read it with plain offset arithmetic::

    header  : 4s magic "RMF1", u16 schema version, u16 flags,
              16s app_id, 16s author_id, 64s app_name, 64s author_name,
              u32 version, u8 capability count, u8 entry count,
              u16 asset count
    caps    : 24s name                                 (x capability count)
    entries : 24s name, u32 function index             (x entry count)
    assets  : 24s name, u8 kind, 3x, u32 offset, u32 length  (x asset count)

All integers are little-endian and all strings ASCII, NUL padded. A value
that does not fit its field is rejected; nothing is ever truncated.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from .constants import (
    CAPABILITY_MAX_LENGTH,
    ENTRY_NAME_MAX_LENGTH,
    ID_MAX_LENGTH,
    ID_PATTERN,
    MEMBER_NAME_MAX_LENGTH,
    MEMBER_NAME_PATTERN,
    NAME_MAX_LENGTH,
    RESERVED_NAMES,
)
from .errors import schema_violation

__all__ = [
    "MANIFEST_MAGIC",
    "SCHEMA_VERSION",
    "FLAG_LAUNCHER",
    "FLAG_SUDO",
    "ASSET_KINDS",
    "AppId",
    "EntryRecord",
    "AssetIndexEntry",
    "Manifest",
    "check_id",
    "check_member_name",
    "manifest_size",
    "build_manifest",
    "decode_manifest",
    "encode_short_id",
    "decode_short_id",
]

MANIFEST_MAGIC = b"RMF1"
SCHEMA_VERSION = 1

FLAG_LAUNCHER = 0x01
FLAG_SUDO = 0x02
_KNOWN_FLAGS = FLAG_LAUNCHER | FLAG_SUDO

_HEADER = struct.Struct("<4sHH16s16s64s64sIBBH")
_CAP = struct.Struct("<24s")
_ENTRY = struct.Struct("<24sI")
_ASSET = struct.Struct("<24sB3xII")
_SHORT_ID = struct.Struct("<16s16s")

_U8_MAX = 0xFF
_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF

# Asset kind codes as stored in the asset index.
ASSET_KINDS: Dict[str, int] = {"raw": 0, "image": 1, "audio": 2}
_KIND_NAMES = {v: k for k, v in ASSET_KINDS.items()}


@dataclass(frozen=True, slots=True, order=True)
class AppId:
    author_id: str
    app_id: str

    def __str__(self) -> str:
        return f"{self.author_id}.{self.app_id}"

    @classmethod
    def parse(cls, text: str) -> "AppId":
        author, sep, app = text.partition(".")
        if not sep:
            raise schema_violation(
                f"invalid app id '{text}': expected <author>.<app>", {"value": text}
            )
        return cls(check_id(author, "author_id"), check_id(app, "app_id"))


@dataclass(frozen=True, slots=True)
class EntryRecord:
    name: str
    function_index: int


@dataclass(frozen=True, slots=True)
class AssetIndexEntry:
    name: str
    kind: str
    offset: int
    length: int


@dataclass(slots=True)
class Manifest:
    app_id: str
    author_id: str
    app_name: str
    author_name: str
    version: int = 0
    launcher: bool = False
    sudo: bool = False
    capabilities: List[str] = field(default_factory=list)
    entries: List[EntryRecord] = field(default_factory=list)
    assets: List[AssetIndexEntry] = field(default_factory=list)

    @property
    def id(self) -> AppId:
        return AppId(self.author_id, self.app_id)

    @property
    def flags(self) -> int:
        return (FLAG_LAUNCHER if self.launcher else 0) | (FLAG_SUDO if self.sudo else 0)

    def encode(self) -> bytes:
        return _encode(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_id": self.app_id,
            "author_id": self.author_id,
            "app_name": self.app_name,
            "author_name": self.author_name,
            "version": self.version,
            "launcher": self.launcher,
            "sudo": self.sudo,
            "capabilities": list(self.capabilities),
            "entries": [
                {"name": e.name, "function_index": e.function_index}
                for e in self.entries
            ],
            "assets": [
                {"name": a.name, "kind": a.kind, "offset": a.offset, "length": a.length}
                for a in self.assets
            ],
        }


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def check_id(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise schema_violation(f"{what} must be a non-empty string", {"field": what})
    if len(value) > ID_MAX_LENGTH:
        raise schema_violation(
            f"{what} '{value}' is {len(value)} chars, limit is {ID_MAX_LENGTH}",
            {"field": what, "value": value},
        )
    if not ID_PATTERN.match(value):
        raise schema_violation(
            f"{what} '{value}' must use [a-z0-9-] and not start or end with '-'",
            {"field": what, "value": value},
        )
    return value


def _check_display(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise schema_violation(f"{what} must be a non-empty string", {"field": what})
    if not value.isascii() or not value.isprintable():
        raise schema_violation(
            f"{what} must be printable ASCII", {"field": what, "value": value}
        )
    if len(value) > NAME_MAX_LENGTH:
        raise schema_violation(
            f"{what} is {len(value)} chars, limit is {NAME_MAX_LENGTH}",
            {"field": what, "value": value},
        )
    return value


def _check_token(value: Any, what: str, limit: int) -> str:
    if not isinstance(value, str) or not value:
        raise schema_violation(f"{what} must be a non-empty string", {"field": what})
    if not value.isascii() or not value.isprintable() or " " in value:
        raise schema_violation(
            f"{what} '{value}' must be printable ASCII without spaces",
            {"field": what, "value": value},
        )
    if len(value) > limit:
        raise schema_violation(
            f"{what} '{value}' is {len(value)} chars, limit is {limit}",
            {"field": what, "value": value},
        )
    return value


def check_member_name(name: Any, allow_reserved: bool = False) -> str:
    if not isinstance(name, str) or not name:
        raise schema_violation("member name must be a non-empty string")
    if len(name) > MEMBER_NAME_MAX_LENGTH:
        raise schema_violation(
            f"member name '{name}' is {len(name)} chars, limit is {MEMBER_NAME_MAX_LENGTH}",
            {"name": name},
        )
    if not MEMBER_NAME_PATTERN.match(name):
        raise schema_violation(
            f"member name '{name}' has invalid characters", {"name": name}
        )
    if not allow_reserved and name in RESERVED_NAMES:
        raise schema_violation(f"member name '{name}' is reserved", {"name": name})
    return name


def _check_uint(value: Any, what: str, limit: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise schema_violation(f"{what} must be an integer", {"field": what})
    if value < 0 or value > limit:
        raise schema_violation(
            f"{what} {value} does not fit (0..{limit})", {"field": what, "value": value}
        )
    return value


def _pad(value: str, size: int) -> bytes:
    # struct pads short strings with NUL but silently truncates long ones.
    raw = value.encode("ascii")
    if len(raw) > size:
        raise schema_violation(f"'{value}' does not fit in {size} bytes")
    return raw


def _unpad(raw: bytes, what: str) -> str:
    text, _, rest = raw.partition(b"\0")
    if rest.strip(b"\0"):
        raise schema_violation(f"{what}: garbage after NUL terminator")
    try:
        return text.decode("ascii")
    except UnicodeDecodeError as exc:
        raise schema_violation(f"{what}: not ASCII") from exc


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def manifest_size(n_capabilities: int, n_entries: int, n_assets: int) -> int:
    """Serialized size; depends only on the counts."""
    return (
        _HEADER.size
        + n_capabilities * _CAP.size
        + n_entries * _ENTRY.size
        + n_assets * _ASSET.size
    )


def _validate(m: Manifest) -> None:
    check_id(m.app_id, "app_id")
    check_id(m.author_id, "author_id")
    _check_display(m.app_name, "app_name")
    _check_display(m.author_name, "author_name")
    _check_uint(m.version, "version", _U32_MAX)
    _check_uint(len(m.capabilities), "capability count", _U8_MAX)
    _check_uint(len(m.entries), "entry count", _U8_MAX)
    _check_uint(len(m.assets), "asset count", _U16_MAX)
    seen = set()
    for cap in m.capabilities:
        _check_token(cap, "capability", CAPABILITY_MAX_LENGTH)
        if cap in seen:
            raise schema_violation(f"duplicate capability '{cap}'", {"name": cap})
        seen.add(cap)
    for e in m.entries:
        _check_token(e.name, "entry point", ENTRY_NAME_MAX_LENGTH)
        _check_uint(e.function_index, f"entry '{e.name}' index", _U32_MAX)
    names = set()
    for a in m.assets:
        check_member_name(a.name)
        if a.name in names:
            raise schema_violation(f"duplicate asset '{a.name}'", {"name": a.name})
        names.add(a.name)
        if a.kind not in ASSET_KINDS:
            raise schema_violation(
                f"asset '{a.name}' has unknown kind '{a.kind}'", {"name": a.name}
            )
        _check_uint(a.offset, f"asset '{a.name}' offset", _U32_MAX)
        _check_uint(a.length, f"asset '{a.name}' length", _U32_MAX)


def _encode(m: Manifest) -> bytes:
    _validate(m)
    out = bytearray(
        _HEADER.pack(
            MANIFEST_MAGIC,
            SCHEMA_VERSION,
            m.flags,
            _pad(m.app_id, 16),
            _pad(m.author_id, 16),
            _pad(m.app_name, 64),
            _pad(m.author_name, 64),
            m.version,
            len(m.capabilities),
            len(m.entries),
            len(m.assets),
        )
    )
    for cap in m.capabilities:
        out += _CAP.pack(_pad(cap, 24))
    for e in m.entries:
        out += _ENTRY.pack(_pad(e.name, 24), e.function_index)
    for a in m.assets:
        out += _ASSET.pack(_pad(a.name, 24), ASSET_KINDS[a.kind], a.offset, a.length)
    return bytes(out)


def build_manifest(
    record: Any,
    entries: Sequence[EntryRecord],
    assets: Sequence[AssetIndexEntry],
) -> bytes:
    """Serialize a project record plus build products.

    ``record`` is any object exposing the project fields (``app_id``,
    ``author_id``, ``app_name``, ``author_name``, ``version``, ``launcher``,
    ``sudo``, ``capabilities``), normally a :class:`rompack.config.ProjectConfig`.
    """
    manifest = Manifest(
        app_id=record.app_id,
        author_id=record.author_id,
        app_name=record.app_name,
        author_name=record.author_name,
        version=record.version,
        launcher=bool(record.launcher),
        sudo=bool(record.sudo),
        capabilities=list(record.capabilities),
        entries=list(entries),
        assets=list(assets),
    )
    return manifest.encode()


def decode_manifest(data: bytes) -> Manifest:
    if len(data) < _HEADER.size:
        raise schema_violation(
            f"manifest is {len(data)} bytes, header needs {_HEADER.size}"
        )
    (
        magic,
        version,
        flags,
        app_id,
        author_id,
        app_name,
        author_name,
        app_version,
        n_caps,
        n_entries,
        n_assets,
    ) = _HEADER.unpack_from(data, 0)
    if magic != MANIFEST_MAGIC:
        raise schema_violation("bad manifest magic", {"magic": magic.hex()})
    if version != SCHEMA_VERSION:
        raise schema_violation(
            f"unsupported manifest schema version {version}", {"version": version}
        )
    if flags & ~_KNOWN_FLAGS:
        raise schema_violation(f"unknown manifest flags 0x{flags:04x}")
    expected = manifest_size(n_caps, n_entries, n_assets)
    if len(data) != expected:
        raise schema_violation(
            f"manifest is {len(data)} bytes, expected {expected}",
            {"size": len(data), "expected": expected},
        )

    pos = _HEADER.size
    caps: List[str] = []
    for _ in range(n_caps):
        (raw,) = _CAP.unpack_from(data, pos)
        caps.append(_unpad(raw, "capability"))
        pos += _CAP.size
    entries: List[EntryRecord] = []
    for _ in range(n_entries):
        raw, index = _ENTRY.unpack_from(data, pos)
        entries.append(EntryRecord(_unpad(raw, "entry point"), index))
        pos += _ENTRY.size
    assets: List[AssetIndexEntry] = []
    for _ in range(n_assets):
        raw, kind, offset, length = _ASSET.unpack_from(data, pos)
        if kind not in _KIND_NAMES:
            raise schema_violation(f"unknown asset kind code {kind}")
        assets.append(
            AssetIndexEntry(_unpad(raw, "asset name"), _KIND_NAMES[kind], offset, length)
        )
        pos += _ASSET.size

    manifest = Manifest(
        app_id=_unpad(app_id, "app_id"),
        author_id=_unpad(author_id, "author_id"),
        app_name=_unpad(app_name, "app_name"),
        author_name=_unpad(author_name, "author_name"),
        version=app_version,
        launcher=bool(flags & FLAG_LAUNCHER),
        sudo=bool(flags & FLAG_SUDO),
        capabilities=caps,
        entries=entries,
        assets=assets,
    )
    _validate(manifest)
    return manifest


def encode_short_id(app: AppId) -> bytes:
    """Compact ``(author, app)`` record used by the VFS system files."""
    check_id(app.author_id, "author_id")
    check_id(app.app_id, "app_id")
    return _SHORT_ID.pack(_pad(app.author_id, 16), _pad(app.app_id, 16))


def decode_short_id(data: bytes) -> AppId:
    if len(data) != _SHORT_ID.size:
        raise schema_violation(f"short id record is {len(data)} bytes")
    author, app = _SHORT_ID.unpack(data)
    return AppId(
        check_id(_unpad(author, "author_id"), "author_id"),
        check_id(_unpad(app, "app_id"), "app_id"),
    )

