"""Package layout planning and assembly.

A package is a sorted list of named members. Its content blob is, for each
member in order::

    u16 name length, name (UTF-8), u32 data length, data

and the package digest is SHA-256 over that blob. The signature block is
kept beside the members and never enters the blob.
"""

from __future__ import annotations

import dataclasses
import struct
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from ..constants import BIN, MAX_MEMBER_SIZE, META, REQUIRED_MEMBERS, SIG
from ..errors import schema_violation
from ..manifest import (
    AppId,
    AssetIndexEntry,
    EntryRecord,
    Manifest,
    build_manifest,
    check_member_name,
    decode_manifest,
    manifest_size,
)
from ..signing import Signature, digest as sha256_digest

__all__ = [
    "Member",
    "MemberPlan",
    "PackagePlan",
    "Package",
    "plan_package",
    "encode_blob",
    "assemble_package",
    "package_from_members",
]

_NAME_LEN = struct.Struct("<H")
_DATA_LEN = struct.Struct("<I")


@dataclass(frozen=True, slots=True)
class Member:
    name: str
    data: bytes


@dataclass(frozen=True, slots=True)
class MemberPlan:
    name: str
    header_offset: int
    data_offset: int
    size: int


@dataclass(slots=True)
class PackagePlan:
    members: List[MemberPlan]
    total_size: int


def _sort_key(name: str) -> bytes:
    return name.encode("utf-8")


def plan_package(members: Sequence[Member]) -> PackagePlan:
    """Validate member names and compute blob offsets in sorted order."""
    seen = set()
    for m in members:
        check_member_name(m.name, allow_reserved=m.name in (META, BIN))
        if m.name in seen:
            raise schema_violation(f"duplicate package member '{m.name}'", {"name": m.name})
        seen.add(m.name)
        if len(m.data) > MAX_MEMBER_SIZE:
            raise schema_violation(
                f"member '{m.name}' is {len(m.data)} bytes, limit is {MAX_MEMBER_SIZE}",
                {"name": m.name, "size": len(m.data)},
            )

    plans: List[MemberPlan] = []
    offset = 0
    for m in sorted(members, key=lambda m: _sort_key(m.name)):
        name_len = len(_sort_key(m.name))
        data_offset = offset + _NAME_LEN.size + name_len + _DATA_LEN.size
        plans.append(MemberPlan(m.name, offset, data_offset, len(m.data)))
        offset = data_offset + len(m.data)
    return PackagePlan(plans, offset)


def encode_blob(members: Iterable[Member]) -> bytes:
    out = bytearray()
    for m in sorted(members, key=lambda m: _sort_key(m.name)):
        raw = _sort_key(m.name)
        out += _NAME_LEN.pack(len(raw))
        out += raw
        out += _DATA_LEN.pack(len(m.data))
        out += m.data
    return bytes(out)


@dataclass(frozen=True, slots=True)
class Package:
    members: List[Member]
    manifest: Manifest
    digest: bytes
    blob: bytes = field(repr=False)
    signature: Signature | None = None

    @property
    def app_id(self) -> AppId:
        return self.manifest.id

    @property
    def size(self) -> int:
        return len(self.blob)

    def member(self, name: str) -> bytes:
        for m in self.members:
            if m.name == name:
                return m.data
        raise KeyError(name)

    def sizes(self) -> Dict[str, int]:
        out = {m.name: len(m.data) for m in self.members}
        if self.signature is not None:
            out[SIG] = len(self.signature.encode())
        return out

    def attach(self, signature: Signature) -> "Package":
        """Return a copy carrying ``signature``."""
        if signature.digest != self.digest:
            raise schema_violation("signature digest does not match package digest")
        return dataclasses.replace(self, signature=signature)


def _check_asset_index(manifest: Manifest, plan: PackagePlan) -> None:
    expected = [
        (p.name, p.data_offset, p.size)
        for p in plan.members
        if p.name not in (META, BIN)
    ]
    actual = [(a.name, a.offset, a.length) for a in manifest.assets]
    if actual != expected:
        raise schema_violation(
            "manifest asset index does not match package members",
            {"expected": [e[0] for e in expected], "actual": [a[0] for a in actual]},
        )


def package_from_members(
    members: Sequence[Member], signature: Signature | None = None
) -> Package:
    """Rebuild a package from stored members (installed tree or archive)."""
    names = {m.name for m in members}
    for required in REQUIRED_MEMBERS:
        if required != SIG and required not in names:
            raise schema_violation(f"package is missing '{required}'", {"name": required})
    plan = plan_package(members)
    ordered = sorted(members, key=lambda m: _sort_key(m.name))
    blob = encode_blob(ordered)
    manifest = decode_manifest(next(m.data for m in ordered if m.name == META))
    _check_asset_index(manifest, plan)
    return Package(ordered, manifest, sha256_digest(blob), blob, signature)


def assemble_package(record, module, assets) -> Package:
    """Lay out, serialize and digest a package.

    ``module`` is a :class:`~rompack.module.postprocess.ProcessedModule` and
    ``assets`` a sequence of :class:`~rompack.assets.transcoder.AssetEntry`.
    The manifest's asset index needs final offsets, so the layout is first
    planned with a placeholder of the manifest's exact size.
    """
    entries = [EntryRecord(e.name, e.function_index) for e in module.entry_points]
    for a in assets:
        check_member_name(a.name)
    placeholder = b"\0" * manifest_size(len(record.capabilities), len(entries), len(assets))
    members = [Member(META, placeholder), Member(BIN, module.data)]
    members += [Member(a.name, a.data) for a in assets]
    plan = plan_package(members)

    kinds = {a.name: a.kind for a in assets}
    index = [
        AssetIndexEntry(p.name, kinds[p.name], p.data_offset, p.size)
        for p in plan.members
        if p.name in kinds
    ]
    meta = build_manifest(record, entries, index)
    if len(meta) != len(placeholder):
        raise schema_violation("manifest size changed after layout")
    members[0] = Member(META, meta)
    ordered = sorted(members, key=lambda m: _sort_key(m.name))
    blob = encode_blob(ordered)
    return Package(ordered, decode_manifest(meta), sha256_digest(blob), blob)
