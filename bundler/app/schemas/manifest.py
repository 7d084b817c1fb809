"""
Bundle manifest and document record schemas.

The manifest is produced by the document-update pipeline whenever a user
edits or imports LaTeX content. This engine only reads it.

Wire shape (camelCase, as stored on the document record):

    {
      "bucket": "...",
      "basePrefix": "...",
      "entryPath": "main.tex",
      "files": [{"path": "chapters/intro.tex", "sha256": "...", "size": 123}]
    }
"""

from __future__ import annotations

import posixpath
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from bundler.app.core.errors import ManifestInvalidError


class BundleFile(BaseModel):
    """A single file belonging to a bundle, addressed relative to the base prefix."""

    path: str = Field(..., description="Manifest-relative path")
    sha256: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.path)[1].lower().lstrip(".")


class BundleManifest(BaseModel):
    """
    Storage description of a multi-file LaTeX bundle.

    ``base_prefix`` and ``entry_path`` may arrive empty from older records;
    call :meth:`require_valid` before any operation.
    """

    bucket: str
    base_prefix: str = Field("", alias="basePrefix")
    entry_path: str = Field("", alias="entryPath")
    files: List[BundleFile] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def require_valid(self) -> "BundleManifest":
        problems = []
        if not self.bucket.strip():
            problems.append("bucket")
        if not self.base_prefix.strip():
            problems.append("basePrefix")
        if not self.entry_path.strip():
            problems.append("entryPath")
        if problems:
            raise ManifestInvalidError(
                "LaTeX manifest is missing required field(s): "
                + ", ".join(problems)
            )
        return self

    def storage_key(self, relative_path: str) -> str:
        """Object key of a manifest-relative path inside ``bucket``."""
        prefix = self.base_prefix.strip().strip("/")
        return f"{prefix}/{relative_path.lstrip('/')}"

    @property
    def relative_paths(self) -> List[str]:
        return [f.path for f in self.files]


class DocumentMetadata(BaseModel):
    latex: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class DocumentRecord(BaseModel):
    """Subset of the document record consumed by the engine."""

    id: str
    title: str = ""
    project_id: Optional[str] = Field(None, alias="projectId")
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    latex_manifest: Optional[BundleManifest] = Field(
        None, alias="latexManifest"
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)
