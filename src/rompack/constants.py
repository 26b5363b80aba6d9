"""Shared constants: member names, id rules, size limits."""

from __future__ import annotations

import re

# Package member holding the serialized manifest.
META = "_meta"
# Package member holding the processed WebAssembly module.
BIN = "_bin"
# Detached signature block. Excluded from the digest.
SIG = "_sig"

RESERVED_NAMES = frozenset({META, BIN, SIG, "_hash", "_key"})
REQUIRED_MEMBERS = (META, BIN, SIG)

ID_MAX_LENGTH = 16
NAME_MAX_LENGTH = 64
MEMBER_NAME_MAX_LENGTH = 24
CAPABILITY_MAX_LENGTH = 24
ENTRY_NAME_MAX_LENGTH = 24

ID_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
MEMBER_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")

MB = 1024 * 1024
DEFAULT_MAX_MODULE_SIZE = 10 * MB
MAX_MEMBER_SIZE = 10 * MB

# Functions the device runtime calls when exported by the app.
ENTRY_POINTS = (
    "_initialize",
    "_start",
    "boot",
    "update",
    "render",
    "render_line",
    "cheat",
    "handle_menu",
)

__all__ = [
    "META",
    "BIN",
    "SIG",
    "RESERVED_NAMES",
    "REQUIRED_MEMBERS",
    "ID_MAX_LENGTH",
    "NAME_MAX_LENGTH",
    "MEMBER_NAME_MAX_LENGTH",
    "CAPABILITY_MAX_LENGTH",
    "ENTRY_NAME_MAX_LENGTH",
    "ID_PATTERN",
    "MEMBER_NAME_PATTERN",
    "MB",
    "DEFAULT_MAX_MODULE_SIZE",
    "MAX_MEMBER_SIZE",
    "ENTRY_POINTS",
]
