"""Project configuration loading (YAML, JSON or TOML).

Example ``rompack.yaml``::

    author_id: lux
    app_id: snake
    author_name: Lux
    app_name: Snake
    version: 3
    module: build/snake.wasm
    capabilities: [net]
    files:
      font: {path: assets/font.fff}
      tiles: {path: assets/tiles.png}
      eat: {path: assets/eat.wav}
"""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .errors import io_failure, schema_violation
from .manifest import check_id, check_member_name

__all__ = [
    "CONFIG_NAMES",
    "DEFAULT_MODULE_PATH",
    "FileConfig",
    "ProjectConfig",
    "find_project_config",
    "load_project_config",
    "parse_project_config",
]

CONFIG_NAMES = ("rompack.yaml", "rompack.yml", "rompack.toml", "rompack.json")
DEFAULT_MODULE_PATH = "main.wasm"

_KNOWN_KEYS = {
    "app_id",
    "author_id",
    "app_name",
    "author_name",
    "version",
    "launcher",
    "sudo",
    "capabilities",
    "files",
    "module",
}


@dataclass(slots=True)
class FileConfig:
    path: Path
    copy: bool = False


@dataclass(slots=True)
class ProjectConfig:
    app_id: str
    author_id: str
    app_name: str
    author_name: str
    version: int = 0
    launcher: bool = False
    sudo: bool = False
    capabilities: List[str] = field(default_factory=list)
    files: Dict[str, FileConfig] = field(default_factory=dict)
    module: Path = Path(DEFAULT_MODULE_PATH)
    root: Path = Path(".")

    @property
    def module_path(self) -> Path:
        return self.root / self.module

    def file_path(self, name: str) -> Path:
        return self.root / self.files[name].path


def find_project_config(project_dir: Path) -> Path:
    for name in CONFIG_NAMES:
        candidate = Path(project_dir) / name
        if candidate.is_file():
            return candidate
    raise schema_violation(
        f"no project config in {project_dir} (looked for {', '.join(CONFIG_NAMES)})",
        {"project_dir": str(project_dir)},
    )


def _load_raw(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise io_failure(f"cannot read {path}", exc) from exc
    suffix = path.suffix.lower()
    try:
        if suffix in {".yaml", ".yml"}:
            return yaml.safe_load(text)
        if suffix == ".toml":
            return tomllib.loads(text)
        return json.loads(text)
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise schema_violation(f"cannot parse {path.name}: {exc}") from exc


def _expect(data: Dict[str, Any], key: str, kind: type, default: Any = None) -> Any:
    value = data.get(key, default)
    if kind is int and isinstance(value, bool):
        value = None
    if not isinstance(value, kind):
        raise schema_violation(
            f"'{key}' must be of type {kind.__name__}", {"field": key}
        )
    return value


def _parse_files(raw: Any) -> Dict[str, FileConfig]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise schema_violation("'files' must be a mapping of name to file entry")
    files: Dict[str, FileConfig] = {}
    for name, entry in raw.items():
        check_member_name(name)
        # shorthand: name: path
        if isinstance(entry, str):
            files[name] = FileConfig(Path(entry))
            continue
        if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
            raise schema_violation(
                f"file '{name}' needs a 'path' string", {"name": name}
            )
        copy = entry.get("copy", False)
        if not isinstance(copy, bool):
            raise schema_violation(f"file '{name}': 'copy' must be a boolean")
        files[name] = FileConfig(Path(entry["path"]), copy)
    return files


def parse_project_config(data: Any, root: Path = Path(".")) -> ProjectConfig:
    if not isinstance(data, dict):
        raise schema_violation("project config root must be a mapping")
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise schema_violation(
            f"unknown project config keys: {', '.join(unknown)}", {"keys": unknown}
        )
    caps = _expect(data, "capabilities", list, [])
    if not all(isinstance(c, str) for c in caps):
        raise schema_violation("'capabilities' must be a list of strings")
    author_id = check_id(data.get("author_id"), "author_id")
    app_id = check_id(data.get("app_id"), "app_id")
    return ProjectConfig(
        app_id=app_id,
        author_id=author_id,
        app_name=_expect(data, "app_name", str, app_id),
        author_name=_expect(data, "author_name", str, author_id),
        version=_expect(data, "version", int, 0),
        launcher=_expect(data, "launcher", bool, False),
        sudo=_expect(data, "sudo", bool, False),
        capabilities=list(caps),
        files=_parse_files(data.get("files")),
        module=Path(_expect(data, "module", str, DEFAULT_MODULE_PATH)),
        root=Path(root),
    )


def load_project_config(path: Path) -> ProjectConfig:
    """Load a config file, or the first known config name inside a directory."""
    path = Path(path)
    if path.is_dir():
        path = find_project_config(path)
    return parse_project_config(_load_raw(path), root=path.parent)
