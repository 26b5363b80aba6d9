"""High-level API for rompack.

``build_rom`` runs the whole pipeline: config, module postprocessing, asset
transcoding, package assembly, signing, then install and/or archive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .assets.limits import DeviceLimits
from .assets.transcoder import AssetEntry, AssetSource, detect_kind, transcode_assets
from .config import ProjectConfig, load_project_config
from .constants import BIN, MAX_MEMBER_SIZE, META
from .errors import asset_too_large, io_failure, schema_violation
from .manifest import AppId
from .module.postprocess import (
    DEFAULT_ALLOWED_IMPORTS,
    ModulePolicy,
    ProcessedModule,
    postprocess_module,
)
from .module.sections import SectionId, parse_exports, parse_imports, parse_sections
from .package.archive import archive_name, read_archive, write_archive
from .package.layout import Package, assemble_package, encode_blob, package_from_members
from .package.tree import read_install_tree
from .reporting import get_reporter, task
from .signing import KeyStore, Signer, digest as sha256_digest
from .vfs import VfsStore, default_vfs_root

__all__ = [
    "BuildOptions",
    "BuildResult",
    "build_rom",
    "inspect_rom",
    "export_rom",
    "import_rom",
]


@dataclass(slots=True)
class BuildOptions:
    project_dir: Path
    vfs_root: Path | None = None
    # Explicit config file; otherwise the first rompack.* in project_dir
    config_path: Path | None = None
    # Defaults to <vfs_root>/sys
    key_store: KeyStore | None = None
    limits: DeviceLimits = field(default_factory=DeviceLimits)
    allowed_imports: Tuple[str, ...] = DEFAULT_ALLOWED_IMPORTS
    required_exports: Tuple[str, ...] = ()
    sign: bool = True
    # Create the author keypair when missing instead of failing
    generate_key: bool = False
    install: bool = True
    archive_path: Path | None = None
    max_workers: int | None = None


@dataclass(slots=True)
class BuildResult:
    package: Package
    module: ProcessedModule
    assets: List[AssetEntry]
    installed_path: Path | None = None
    archive_path: Path | None = None
    sizes: Dict[str, int] = field(default_factory=dict)


def _read(path: Path, what: str, limit: int | None = MAX_MEMBER_SIZE) -> bytes:
    """Read an input file; ``limit=None`` skips the size cap."""
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise io_failure(f"cannot read {what}", exc) from exc
    if limit is not None and size > limit:
        raise asset_too_large(
            f"{what} {path.name} is {size} bytes, limit is {limit}",
            {"path": str(path), "size": size},
        )
    try:
        return path.read_bytes()
    except OSError as exc:
        raise io_failure(f"cannot read {what}", exc) from exc


def _collect_sources(config: ProjectConfig) -> List[AssetSource]:
    sources: List[AssetSource] = []
    for name in sorted(config.files):
        entry = config.files[name]
        path = config.file_path(name)
        kind = detect_kind(path, entry.copy)
        sources.append(AssetSource(name, _read(path, f"asset '{name}'"), kind, path))
    return sources


def _installed_sizes(vfs: VfsStore, app: AppId) -> Dict[str, int]:
    app_dir = vfs.app_dir(app)
    if not app_dir.is_dir():
        return {}
    return {p.name: p.stat().st_size for p in app_dir.iterdir() if p.is_file()}


def build_rom(options: BuildOptions) -> BuildResult:
    rep = get_reporter()
    if not options.sign and (options.install or options.archive_path is not None):
        raise schema_violation("unsigned builds can be neither installed nor archived")

    config = load_project_config(options.config_path or options.project_dir)
    app = AppId(config.author_id, config.app_id)
    rep.status(
        f"Project summary: app={app} version={config.version} "
        f"files={len(config.files)} capabilities={len(config.capabilities)}"
    )

    policy = ModulePolicy(
        allowed_imports=tuple(options.allowed_imports),
        required_exports=tuple(options.required_exports),
    )
    with task("module", "Postprocess module") as stats:
        # only the postprocessed output is size-limited
        raw_module = _read(config.module_path, "module", limit=None)
        module = postprocess_module(raw_module, policy)
        stats["sections"] = len(parse_sections(module.data))
        stats["dropped"] = len(module.dropped)
        stats["bytes"] = len(module.data)
    rep.status(
        f"Module summary: input={module.input_size} output={len(module.data)} "
        f"dropped={len(module.dropped)} imports={len(module.imports)} "
        f"entries={len(module.entry_points)}"
    )

    sources = _collect_sources(config)
    with task("assets", "Transcode assets", total=len(sources)) as stats:
        assets = transcode_assets(
            sources,
            options.limits,
            max_workers=options.max_workers,
            on_done=lambda entry: rep.advance("assets", current_item=entry.name),
        )
        stats["assets"] = len(assets)
        stats["bytes"] = sum(len(a.data) for a in assets)
    by_kind: Dict[str, int] = {}
    for a in assets:
        by_kind[a.kind] = by_kind.get(a.kind, 0) + 1
    rep.status(
        f"Assets summary: assets={len(assets)} "
        + " ".join(f"{k}={v}" for k, v in sorted(by_kind.items()))
    )

    with task("package", "Assemble package") as stats:
        package = assemble_package(config, module, assets)
        stats["members"] = len(package.members)
        stats["bytes"] = package.size
    rep.status(
        f"Package summary: members={len(package.members)} bytes={package.size} "
        f"digest={package.digest.hex()[:16]}"
    )

    vfs_root = Path(options.vfs_root) if options.vfs_root else default_vfs_root()
    vfs = VfsStore(vfs_root)
    result = BuildResult(package=package, module=module, assets=assets)
    if options.sign:
        key_store = options.key_store or vfs.key_store
        if options.generate_key:
            key_store.ensure_keypair(config.author_id)
        with task("sign", "Sign package"):
            signature = Signer(key_store, config.author_id).sign(package.digest)
            package = package.attach(signature)
        rep.status(
            f"Sign summary: author={config.author_id} "
            f"fingerprint={signature.key_fingerprint.hex()[:16]}"
        )
        result.package = package

    old_sizes = _installed_sizes(vfs, app)
    if options.install:
        with task("install", "Install into VFS"):
            result.installed_path = vfs.install(package)
        rep.status(f"Install summary: app={app} path={result.installed_path}")
    if options.archive_path is not None:
        with task("archive", "Write archive") as stats:
            result.archive_path = _write_archive(package, Path(options.archive_path))
            stats["bytes"] = result.archive_path.stat().st_size
        rep.status(f"Archive summary: path={result.archive_path}")

    result.sizes = package.sizes()
    rep.size_table(result.sizes, old_sizes)
    rep.status(f"Build summary: app={app} bytes={package.size} members={len(package.members)}")
    return result


def _write_archive(package: Package, path: Path) -> Path:
    if path.is_dir():
        path = path / archive_name(package)
    return write_archive(package, path)


def _module_stats(data: bytes) -> Dict[str, Any]:
    sections = parse_sections(data)
    stats: Dict[str, Any] = {
        "size": len(data),
        "sections": [s.label for s in sections],
        "imports": [],
        "exports": [],
    }
    for s in sections:
        if s.id == SectionId.IMPORT:
            stats["imports"] = [i.qualified_name for i in parse_imports(s)]
        elif s.id == SectionId.EXPORT:
            stats["exports"] = [e.name for e in parse_exports(s)]
    return stats


def inspect_rom(target: str | Path, vfs_root: Path | None = None) -> Dict[str, Any]:
    """Summarize an archive, an installed directory or an installed app id."""
    path = Path(target)
    if path.is_file():
        contents = read_archive(path)
        members, sig = contents.members, contents.signature
    elif path.is_dir():
        members, sig = read_install_tree(path)
    else:
        vfs = VfsStore(Path(vfs_root) if vfs_root else default_vfs_root())
        members, sig = read_install_tree(vfs.app_dir(AppId.parse(str(target))))
    actual = sha256_digest(encode_blob(members))
    valid = sig.is_valid_for(actual)
    package = package_from_members(members, sig)
    return {
        "app": str(package.app_id),
        "digest": package.digest.hex(),
        "signature": {
            "fingerprint": sig.key_fingerprint.hex(),
            "valid": valid,
        },
        "sizes": package.sizes(),
        "manifest": package.manifest.to_dict(),
        "module": _module_stats(package.member(BIN)),
        "meta_size": len(package.member(META)),
    }


def export_rom(app_id: str, vfs_root: Path | None = None, out_path: Path | None = None) -> Path:
    vfs = VfsStore(Path(vfs_root) if vfs_root else default_vfs_root())
    with task("export", "Export archive") as stats:
        path = vfs.export(AppId.parse(app_id), out_path)
        stats["bytes"] = path.stat().st_size
    get_reporter().status(f"Archive summary: app={app_id} path={path}")
    return path


def import_rom(archive: Path, vfs_root: Path | None = None) -> Package:
    vfs = VfsStore(Path(vfs_root) if vfs_root else default_vfs_root())
    with task("import", "Import archive") as stats:
        package = vfs.import_archive(Path(archive))
        stats["members"] = len(package.members)
        stats["bytes"] = package.size
    get_reporter().status(
        f"Import summary: app={package.app_id} digest={package.digest.hex()[:16]}"
    )
    return package
