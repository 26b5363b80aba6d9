"""Validate and rewrite a compiled WebAssembly module for the device.

The rewrite keeps an allow-listed subset of sections, in their original
order, re-encoding each section size as canonical LEB128 while leaving the
payload bytes untouched. Running it on its own output is a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from ..constants import DEFAULT_MAX_MODULE_SIZE, ENTRY_POINTS
from ..errors import invalid_import, missing_export, module_too_large
from ..logging import get_logger
from .sections import (
    ExternalKind,
    Export,
    Import,
    Section,
    SectionId,
    encode_sections,
    parse_exports,
    parse_imports,
    parse_sections,
)

__all__ = [
    "DEFAULT_KEPT_SECTIONS",
    "DEFAULT_ALLOWED_IMPORTS",
    "ModulePolicy",
    "EntryPoint",
    "ProcessedModule",
    "postprocess_module",
    "import_allowed",
]

# Custom sections (names, producers, DWARF) are never kept.
DEFAULT_KEPT_SECTIONS = frozenset(
    int(s) for s in SectionId if s != SectionId.CUSTOM
)

# Host modules provided by the device runtime.
DEFAULT_ALLOWED_IMPORTS = (
    "audio.*",
    "graphics.*",
    "input.*",
    "menu.*",
    "misc.*",
    "net.*",
    "stats.*",
    "sudo.*",
    "fs.*",
    "wasi_snapshot_preview1.*",
)


@dataclass(frozen=True, slots=True)
class ModulePolicy:
    allowed_imports: Tuple[str, ...] = DEFAULT_ALLOWED_IMPORTS
    required_exports: Tuple[str, ...] = ()
    kept_sections: frozenset = DEFAULT_KEPT_SECTIONS
    max_size: int = DEFAULT_MAX_MODULE_SIZE


@dataclass(frozen=True, slots=True)
class EntryPoint:
    name: str
    function_index: int


@dataclass(slots=True)
class ProcessedModule:
    data: bytes
    imports: List[Import] = field(default_factory=list)
    exports: List[Export] = field(default_factory=list)
    entry_points: List[EntryPoint] = field(default_factory=list)
    dropped: List[Tuple[str, int]] = field(default_factory=list)
    input_size: int = 0


def import_allowed(qualified_name: str, allowed: Iterable[str]) -> bool:
    """Exact name or ``module.*`` wildcard match."""
    module, _, _ = qualified_name.partition(".")
    for pattern in allowed:
        if pattern == qualified_name:
            return True
        if pattern.endswith(".*") and pattern[:-2] == module:
            return True
    return False


def _find(sections: Sequence[Section], sid: SectionId) -> Section | None:
    for s in sections:
        if s.id == sid:
            return s
    return None


def _entry_points(exports: List[Export]) -> List[EntryPoint]:
    by_name = {e.name: e for e in exports if e.kind == ExternalKind.FUNC}
    return [
        EntryPoint(name, by_name[name].index)
        for name in ENTRY_POINTS
        if name in by_name
    ]


def postprocess_module(data: bytes, policy: ModulePolicy | None = None) -> ProcessedModule:
    policy = policy or ModulePolicy()
    logger = get_logger("module")
    sections = parse_sections(data)

    import_section = _find(sections, SectionId.IMPORT)
    imports = parse_imports(import_section) if import_section else []
    for imp in imports:
        if not import_allowed(imp.qualified_name, policy.allowed_imports):
            raise invalid_import(imp.qualified_name)

    export_section = _find(sections, SectionId.EXPORT)
    exports = parse_exports(export_section) if export_section else []
    exported = {e.name for e in exports}
    for name in policy.required_exports:
        if name not in exported:
            raise missing_export(name)

    kept: List[Section] = []
    dropped: List[Tuple[str, int]] = []
    for s in sections:
        if s.id in policy.kept_sections:
            kept.append(s)
        else:
            dropped.append((s.label, len(s.payload)))
            logger.debug("dropping section %s (%d bytes)", s.label, len(s.payload))

    out = encode_sections(kept)
    if len(out) > policy.max_size:
        raise module_too_large(len(out), policy.max_size)
    return ProcessedModule(
        data=out,
        imports=imports,
        exports=exports,
        entry_points=_entry_points(exports),
        dropped=dropped,
        input_size=len(data),
    )
