"""Error definitions for rompack.

Every stage raises a subclass of :class:`RomError` carrying a stable code,
a human message and an optional context dict. Errors are never retried or
downgraded by the pipeline; the CLI is the only place that catches them.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

E_INVALID_IMPORT = "E_INVALID_IMPORT"
E_MISSING_EXPORT = "E_MISSING_EXPORT"
E_MODULE_TOO_LARGE = "E_MODULE_TOO_LARGE"
E_MALFORMED_MODULE = "E_MALFORMED_MODULE"
E_ASSET_TOO_LARGE = "E_ASSET_TOO_LARGE"
E_UNSUPPORTED_ASSET = "E_UNSUPPORTED_ASSET"
E_SCHEMA = "E_SCHEMA"
E_KEY_NOT_FOUND = "E_KEY_NOT_FOUND"
E_SIGNATURE_MISMATCH = "E_SIGNATURE_MISMATCH"
E_ARCHIVE_CORRUPT = "E_ARCHIVE_CORRUPT"
E_IO = "E_IO"


@dataclass
class RomError(Exception):
    code: str
    message: str
    context: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}" + (
            f" | ctx={self.context}" if self.context else ""
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context or {},
        }


class InvalidImport(RomError):
    @property
    def name(self) -> str:
        return (self.context or {}).get("name", "")


class MissingExport(RomError):
    @property
    def name(self) -> str:
        return (self.context or {}).get("name", "")


class ModuleTooLarge(RomError):
    pass


class MalformedModule(RomError):
    pass


class AssetTooLarge(RomError):
    pass


class UnsupportedAssetFormat(RomError):
    pass


class SchemaViolation(RomError):
    pass


class KeyNotFound(RomError):
    pass


class SignatureMismatch(RomError):
    pass


class ArchiveCorrupt(RomError):
    pass


class IOFailure(RomError):
    pass


def invalid_import(name: str) -> InvalidImport:
    return InvalidImport(
        code=E_INVALID_IMPORT,
        message=f"import not allowed on device: {name}",
        context={"name": name},
    )


def missing_export(name: str) -> MissingExport:
    return MissingExport(
        code=E_MISSING_EXPORT,
        message=f"required export missing: {name}",
        context={"name": name},
    )


def module_too_large(size: int, limit: int) -> ModuleTooLarge:
    return ModuleTooLarge(
        code=E_MODULE_TOO_LARGE,
        message=f"processed module is {size} bytes, limit is {limit}",
        context={"size": size, "limit": limit},
    )


def malformed_module(
    message: str, context: Optional[Dict[str, Any]] = None
) -> MalformedModule:
    return MalformedModule(
        code=E_MALFORMED_MODULE, message=message, context=context
    )


def asset_too_large(
    message: str, context: Optional[Dict[str, Any]] = None
) -> AssetTooLarge:
    return AssetTooLarge(code=E_ASSET_TOO_LARGE, message=message, context=context)


def unsupported_asset(
    message: str, context: Optional[Dict[str, Any]] = None
) -> UnsupportedAssetFormat:
    return UnsupportedAssetFormat(
        code=E_UNSUPPORTED_ASSET, message=message, context=context
    )


def schema_violation(
    message: str, context: Optional[Dict[str, Any]] = None
) -> SchemaViolation:
    return SchemaViolation(code=E_SCHEMA, message=message, context=context)


def key_not_found(author_id: str) -> KeyNotFound:
    return KeyNotFound(
        code=E_KEY_NOT_FOUND,
        message=f"no signing key configured for author '{author_id}'",
        context={"author_id": author_id},
    )


def signature_mismatch(
    message: str, context: Optional[Dict[str, Any]] = None
) -> SignatureMismatch:
    return SignatureMismatch(
        code=E_SIGNATURE_MISMATCH, message=message, context=context
    )


def archive_corrupt(
    message: str, context: Optional[Dict[str, Any]] = None
) -> ArchiveCorrupt:
    return ArchiveCorrupt(code=E_ARCHIVE_CORRUPT, message=message, context=context)


def io_failure(message: str, exc: OSError) -> IOFailure:
    return IOFailure(
        code=E_IO,
        message=f"{message}: {exc}",
        context={"errno": exc.errno, "path": exc.filename},
    )


__all__ = [
    "RomError",
    "InvalidImport",
    "MissingExport",
    "ModuleTooLarge",
    "MalformedModule",
    "AssetTooLarge",
    "UnsupportedAssetFormat",
    "SchemaViolation",
    "KeyNotFound",
    "SignatureMismatch",
    "ArchiveCorrupt",
    "IOFailure",
    "invalid_import",
    "missing_export",
    "module_too_large",
    "malformed_module",
    "asset_too_large",
    "unsupported_asset",
    "schema_violation",
    "key_not_found",
    "signature_mismatch",
    "archive_corrupt",
    "io_failure",
    "E_INVALID_IMPORT",
    "E_MISSING_EXPORT",
    "E_MODULE_TOO_LARGE",
    "E_MALFORMED_MODULE",
    "E_ASSET_TOO_LARGE",
    "E_UNSUPPORTED_ASSET",
    "E_SCHEMA",
    "E_KEY_NOT_FOUND",
    "E_SIGNATURE_MISMATCH",
    "E_ARCHIVE_CORRUPT",
    "E_IO",
]
