"""WebAssembly binary section codec.

Only the outer structure is decoded: the preamble, the section list, and the
import/export vectors needed to validate a module against the device ABI.
Section payloads are otherwise carried through untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import List

from ..errors import malformed_module

__all__ = [
    "WASM_MAGIC",
    "WASM_VERSION",
    "HEADER",
    "SectionId",
    "SECTION_ORDER",
    "ExternalKind",
    "Section",
    "Import",
    "Export",
    "Reader",
    "encode_u32",
    "parse_sections",
    "encode_sections",
    "parse_imports",
    "parse_exports",
]

WASM_MAGIC = b"\x00asm"
WASM_VERSION = b"\x01\x00\x00\x00"
HEADER = WASM_MAGIC + WASM_VERSION


class SectionId(IntEnum):
    CUSTOM = 0
    TYPE = 1
    IMPORT = 2
    FUNCTION = 3
    TABLE = 4
    MEMORY = 5
    GLOBAL = 6
    EXPORT = 7
    START = 8
    ELEMENT = 9
    CODE = 10
    DATA = 11
    DATA_COUNT = 12
    TAG = 13


# Position of each non-custom section in the binary. Each may appear once.
SECTION_ORDER = {
    sid: rank
    for rank, sid in enumerate(
        (
            SectionId.TYPE,
            SectionId.IMPORT,
            SectionId.FUNCTION,
            SectionId.TABLE,
            SectionId.MEMORY,
            SectionId.TAG,
            SectionId.GLOBAL,
            SectionId.EXPORT,
            SectionId.START,
            SectionId.ELEMENT,
            SectionId.DATA_COUNT,
            SectionId.CODE,
            SectionId.DATA,
        )
    )
}


class ExternalKind(IntEnum):
    FUNC = 0
    TABLE = 1
    MEMORY = 2
    GLOBAL = 3
    TAG = 4


@dataclass(frozen=True, slots=True)
class Section:
    id: int
    payload: bytes
    offset: int = 0  # offset of the id byte in the input, for diagnostics

    @property
    def kind(self) -> str:
        try:
            return SectionId(self.id).name.lower()
        except ValueError:
            return f"unknown({self.id})"

    @property
    def custom_name(self) -> str | None:
        if self.id != SectionId.CUSTOM:
            return None
        r = Reader(self.payload, label="custom section name")
        return r.name()

    @property
    def label(self) -> str:
        if self.id == SectionId.CUSTOM:
            return f"custom:{self.custom_name}"
        return self.kind


@dataclass(frozen=True, slots=True)
class Import:
    module: str
    field: str
    kind: ExternalKind

    @property
    def qualified_name(self) -> str:
        return f"{self.module}.{self.field}"


@dataclass(frozen=True, slots=True)
class Export:
    name: str
    kind: ExternalKind
    index: int


class Reader:
    """Cursor over a byte buffer with LEB128 helpers."""

    def __init__(self, data: bytes, pos: int = 0, end: int | None = None, label: str = "module"):
        self.data = data
        self.pos = pos
        self.end = len(data) if end is None else end
        self.label = label

    def at_end(self) -> bool:
        return self.pos >= self.end

    def fail(self, what: str):
        raise malformed_module(
            f"{self.label}: {what} at offset {self.pos}",
            {"offset": self.pos},
        )

    def byte(self) -> int:
        if self.pos >= self.end:
            self.fail("unexpected end of data")
        b = self.data[self.pos]
        self.pos += 1
        return b

    def read(self, n: int) -> bytes:
        if n < 0 or self.pos + n > self.end:
            self.fail(f"read of {n} bytes overruns buffer")
        out = self.data[self.pos : self.pos + n]
        self.pos += n
        return out

    def uleb(self, max_bits: int = 32) -> int:
        result = 0
        shift = 0
        max_len = (max_bits + 6) // 7
        for _ in range(max_len):
            b = self.byte()
            result |= (b & 0x7F) << shift
            shift += 7
            if not b & 0x80:
                break
        else:
            self.fail("LEB128 integer too long")
        if result >> max_bits:
            self.fail(f"LEB128 integer exceeds u{max_bits}")
        return result

    def name(self) -> str:
        raw = self.read(self.uleb())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise malformed_module(
                f"{self.label}: name is not valid UTF-8 at offset {self.pos}",
                {"offset": self.pos},
            ) from exc

    def limits(self) -> None:
        flags = self.uleb()
        wide = bool(flags & 0x04)  # memory64
        self.uleb(64 if wide else 32)
        if flags & 0x01:
            self.uleb(64 if wide else 32)


def encode_u32(value: int) -> bytes:
    """Canonical (minimal length) unsigned LEB128."""
    if value < 0 or value > 0xFFFFFFFF:
        raise ValueError(f"value out of u32 range: {value}")
    out = bytearray()
    while True:
        b = value & 0x7F
        value >>= 7
        if value:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def parse_sections(data: bytes) -> List[Section]:
    if len(data) < len(HEADER) or data[:4] != WASM_MAGIC:
        raise malformed_module("not a WebAssembly binary (bad magic)")
    if data[4:8] != WASM_VERSION:
        raise malformed_module(
            "unsupported WebAssembly encoding (expected core module version 1)",
            {"version": data[4:8].hex()},
        )
    r = Reader(data, pos=len(HEADER))
    sections: List[Section] = []
    last_rank = -1
    while not r.at_end():
        offset = r.pos
        sid = r.byte()
        if sid != SectionId.CUSTOM:
            rank = SECTION_ORDER.get(sid)
            if rank is None:
                r.fail(f"unknown section id {sid}")
            if rank <= last_rank:
                r.fail(f"section {SectionId(sid).name.lower()} is duplicated or out of order")
            last_rank = rank
        size = r.uleb()
        payload = r.read(size)
        sections.append(Section(sid, payload, offset))
    return sections


def encode_sections(sections: List[Section]) -> bytes:
    out = bytearray(HEADER)
    for s in sections:
        out.append(s.id)
        out += encode_u32(len(s.payload))
        out += s.payload
    return bytes(out)


def _skip_import_desc(r: Reader, kind: int) -> None:
    if kind == ExternalKind.FUNC:
        r.uleb()  # type index
    elif kind == ExternalKind.TABLE:
        r.byte()  # reftype
        r.limits()
    elif kind == ExternalKind.MEMORY:
        r.limits()
    elif kind == ExternalKind.GLOBAL:
        r.byte()  # valtype
        r.byte()  # mutability
    elif kind == ExternalKind.TAG:
        r.byte()  # attribute
        r.uleb()  # type index
    else:
        r.fail(f"unknown import kind {kind}")


def parse_imports(section: Section) -> List[Import]:
    r = Reader(section.payload, label="import section")
    imports: List[Import] = []
    for _ in range(r.uleb()):
        module = r.name()
        field = r.name()
        kind = r.byte()
        _skip_import_desc(r, kind)
        imports.append(Import(module, field, ExternalKind(kind)))
    if not r.at_end():
        r.fail("trailing bytes")
    return imports


def parse_exports(section: Section) -> List[Export]:
    r = Reader(section.payload, label="export section")
    exports: List[Export] = []
    for _ in range(r.uleb()):
        name = r.name()
        kind = r.byte()
        if kind > ExternalKind.TAG:
            r.fail(f"unknown export kind {kind}")
        index = r.uleb()
        exports.append(Export(name, ExternalKind(kind), index))
    if not r.at_end():
        r.fail("trailing bytes")
    return exports

