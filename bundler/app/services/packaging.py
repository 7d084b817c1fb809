"""
Package assembly for compilation or download.

A package is the merged LaTeX source plus every binary it needs:

- document-scoped assets referenced via ``\\includegraphics{assets/...}``
- the bundle's auxiliary (non-``.tex``) files, e.g. bibliographies and
  figures stored beside the sources

Guarantees:
- all-or-nothing: either every file is present, or MissingAssetsError is
  raised with the complete list of problems
- deterministic file order (assets in extraction order, then auxiliary
  files in manifest order)
- no compilation happens here
- archive paths are relative to the bundle root; the main source sits at
  the entry path and assets sit in an ``assets/`` directory beside it
"""

from __future__ import annotations

import io
import logging
import posixpath
import zipfile
from typing import Iterable, List, Optional

from bundler.app.checks.asset_validation import validate_assets
from bundler.app.core.errors import (
    BlobStoreError,
    MissingAssetsError,
    PackageTooLargeError,
)
from bundler.app.latex.paths import normalize_relative_path
from bundler.app.schemas.manifest import BundleManifest
from bundler.app.schemas.package import (
    BundlePackage,
    MissingAsset,
    MissingAssetKind,
    PackageFile,
)
from bundler.app.storage.blob_store import BlobStore

logger = logging.getLogger("bundler.packaging")

MAIN_SOURCE_NAME = "main.tex"

# Sources are already inlined into the main source.
_INLINED_EXTENSIONS = {"tex"}

# Fixed timestamp so identical packages zip to identical bytes.
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class PackageAssembler:
    """
    Builds self-contained bundle packages.

    Stateless apart from its blob store; safe to share across requests.
    """

    def __init__(self, blob_store: BlobStore, *, max_package_bytes: Optional[int] = None):
        self._blob_store = blob_store
        self._max_package_bytes = max_package_bytes

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def assemble(
        self,
        *,
        main_source: str,
        doc_id: str,
        bucket: str,
        manifest: Optional[BundleManifest] = None,
    ) -> BundlePackage:
        """
        Validate every referenced file and build the package.

        Raises:
            MissingAssetsError: one or more files could not be admitted.
                Carries the diagnostics of the whole batch.
        """
        assets = await validate_assets(
            main_source, doc_id, self._blob_store, bucket
        )

        missing: List[MissingAsset] = list(assets.missing)
        files: List[PackageFile] = list(assets.extra_files)
        main_path = MAIN_SOURCE_NAME

        if manifest is not None:
            main_path = normalize_relative_path(manifest.entry_path.lstrip("/"))
            entry_dir = posixpath.dirname(main_path)
            if entry_dir:
                files = [
                    PackageFile(
                        rel_path=posixpath.join(entry_dir, f.rel_path), data=f.data
                    )
                    for f in files
                ]
            aux_files, aux_missing = await self._collect_auxiliary_files(
                manifest, main_path, exclude={f.rel_path for f in files}
            )
            files.extend(aux_files)
            missing.extend(aux_missing)

        if missing:
            raise MissingAssetsError(missing)

        package = BundlePackage(
            main_source=main_source, main_path=main_path, files=files
        )

        if (
            self._max_package_bytes is not None
            and package.total_bytes > self._max_package_bytes
        ):
            raise PackageTooLargeError(
                package.total_bytes, self._max_package_bytes
            )

        logger.info(
            "package_assembled",
            extra={
                "document_id": doc_id,
                "file_count": len(package.files),
                "total_bytes": package.total_bytes,
            },
        )
        return package

    @staticmethod
    def to_zip(package: BundlePackage) -> bytes:
        """Serialize a package as a zip archive, main source first."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            _write_entry(archive, package.main_path, package.main_source.encode("utf-8"))
            for file in package.files:
                _write_entry(archive, file.rel_path, file.data)
        return buffer.getvalue()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _collect_auxiliary_files(
        self,
        manifest: BundleManifest,
        entry_path: str,
        *,
        exclude: Iterable[str],
    ) -> tuple[List[PackageFile], List[MissingAsset]]:
        skip = set(exclude)
        files: List[PackageFile] = []
        missing: List[MissingAsset] = []

        for bundle_file in manifest.files:
            path = normalize_relative_path(bundle_file.path.lstrip("/"))
            if (
                path == entry_path
                or path in skip
                or bundle_file.extension in _INLINED_EXTENSIONS
            ):
                continue

            try:
                data = await self._blob_store.download(
                    manifest.bucket, manifest.storage_key(path)
                )
            except BlobStoreError as exc:
                missing.append(
                    MissingAsset(
                        key=path,
                        reason=exc.message,
                        kind=MissingAssetKind.BUNDLE_FILE_UNAVAILABLE,
                    )
                )
                continue

            files.append(PackageFile(rel_path=path, data=data))

        return files, missing


def _write_entry(archive: zipfile.ZipFile, name: str, data: bytes) -> None:
    info = zipfile.ZipInfo(name, date_time=_ZIP_EPOCH)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    archive.writestr(info, data)
