"""
Package, diagnostic and lookup result schemas.

These objects are engine outputs: frozen, strict, and recomputed on every
call. A package is either complete or absent; diagnostics are only ever
returned as a full batch.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bundler.app.schemas.ir import SectionNode


class MissingAssetKind(str, Enum):
    """Why a referenced file could not be admitted into a package."""

    OWNERSHIP_MISMATCH = "ownership_mismatch"
    INVALID_KEY = "invalid_key"
    DOWNLOAD_FAILED = "download_failed"
    EMPTY_PAYLOAD = "empty_payload"
    BUNDLE_FILE_UNAVAILABLE = "bundle_file_unavailable"


class AssetReference(BaseModel):
    key: str

    model_config = ConfigDict(frozen=True)

    @property
    def rel_path(self) -> str:
        return f"assets/{self.key}"


class MissingAsset(BaseModel):
    key: str
    reason: str
    kind: MissingAssetKind

    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=True)


class PackageFile(BaseModel):
    rel_path: str
    data: bytes

    model_config = ConfigDict(frozen=True, extra="forbid")


class AssetValidationResult(BaseModel):
    """
    Outcome of one validation batch.

    ``ok`` is True iff ``missing`` is empty; ``extra_files`` is only
    populated on success.
    """

    ok: bool
    extra_files: List[PackageFile] = Field(default_factory=list)
    missing: List[MissingAsset] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _enforce_all_or_nothing(self) -> "AssetValidationResult":
        if self.ok and self.missing:
            raise ValueError("A successful validation cannot carry diagnostics")
        if not self.ok and not self.missing:
            raise ValueError("A failed validation must carry diagnostics")
        if not self.ok and self.extra_files:
            raise ValueError("A failed validation must not carry files")
        return self


class BundlePackage(BaseModel):
    main_source: str
    main_path: str = "main.tex"
    files: List[PackageFile] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def total_bytes(self) -> int:
        return len(self.main_source.encode("utf-8")) + sum(
            len(f.data) for f in self.files
        )


class ResolvedBundleFile(BaseModel):
    requested_path: str
    resolved_path: str

    model_config = ConfigDict(frozen=True)


class AssetContent(BaseModel):
    key: str
    data: bytes
    content_type: str

    model_config = ConfigDict(frozen=True)


class BundleFileContent(BaseModel):
    resolved: ResolvedBundleFile
    data: bytes
    content_type: str

    model_config = ConfigDict(frozen=True)


class BundlePreview(BaseModel):
    merged_latex: str
    references: Optional[SectionNode] = None

    model_config = ConfigDict(frozen=True)
