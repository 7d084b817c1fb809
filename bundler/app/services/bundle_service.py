"""
LaTeX bundle service.

Request-scoped orchestration of the engine's four outputs:

    preview   merged LaTeX source + synthesized References section
    package   validated, self-contained package (source + binaries)
    file      single bundle file lookup for previews
    upload    document-scoped asset upload (pass-through to the blob store)

Nothing computed here is cached or persisted; every call starts from the
document record and the blob store. The only cross-request state is the
per-bucket guards used for asset uploads.

Data flow:

    DocumentRecord.latex_manifest
        -> load_sources (entry + preloaded .tex / .bib)
        -> expand_includes
        -> {parse bibliography, extract citations} -> reference section
        -> validate assets -> package
"""

from __future__ import annotations

import logging
import mimetypes
import posixpath
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from bundler.app.core.config import Settings
from bundler.app.core.errors import (
    AssetNotFoundError,
    BlobNotFoundError,
    BlobStoreError,
    BundleFileNotFoundError,
    BundleValidationError,
    EntryNotFoundError,
    InvalidAssetKeyError,
    ManifestInvalidError,
)
from bundler.app.latex.bibtex import merge_bibliographies
from bundler.app.latex.citations import extract_cited_keys
from bundler.app.latex.includes import expand_includes
from bundler.app.latex.paths import normalize_relative_path
from bundler.app.latex.references import build_reference_section
from bundler.app.schemas.manifest import BundleManifest, DocumentRecord
from bundler.app.schemas.package import (
    AssetContent,
    AssetReference,
    BundleFileContent,
    BundlePackage,
    BundlePreview,
    ResolvedBundleFile,
)
from bundler.app.services.bundle_resolver import (
    reject_traversal,
    resolve_bundle_file,
)
from bundler.app.services.packaging import PackageAssembler
from bundler.app.storage.blob_store import (
    BlobStore,
    BucketGuard,
    is_bucket_not_found,
)
from bundler.app.storage.documents import DocumentStore
from bundler.app.utils.asset_keys import (
    build_asset_key,
    parse_document_id_from_key,
)

logger = logging.getLogger("bundler.service")

_SOURCE_EXTENSIONS = {"tex"}
_BIBLIOGRAPHY_EXTENSIONS = {"bib"}

_CONTENT_TYPE_OVERRIDES = {
    "tex": "text/x-tex; charset=utf-8",
    "bib": "text/x-bibtex; charset=utf-8",
    "eps": "application/postscript",
}


class LoadedBundle(BaseModel):
    """Sources of one bundle, fetched once per request."""

    manifest: BundleManifest
    entry_path: str
    path_to_text: Dict[str, str]
    bib_texts: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def entry_text(self) -> str:
        return self.path_to_text[self.entry_path]


class MergedSource(BaseModel):
    latex: str
    bib_texts: List[str] = Field(default_factory=list)
    manifest: Optional[BundleManifest] = None

    model_config = ConfigDict(frozen=True)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def guess_content_type(path: str) -> str:
    ext = posixpath.splitext(path)[1].lower().lstrip(".")
    if ext in _CONTENT_TYPE_OVERRIDES:
        return _CONTENT_TYPE_OVERRIDES[ext]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


class LatexBundleService:
    """
    Engine facade used by the HTTP layer.

    The blob store and document store are injected; both are external
    collaborators.
    """

    def __init__(
        self,
        *,
        blob_store: BlobStore,
        document_store: DocumentStore,
        settings: Settings,
    ) -> None:
        self._blob_store = blob_store
        self._document_store = document_store
        self._settings = settings

        self._bucket_guards: Dict[str, BucketGuard] = {}
        self._assembler = PackageAssembler(
            blob_store,
            max_package_bytes=settings.max_package_mb * 1024 * 1024,
        )

    # ------------------------------------------------------------------
    # Source loading
    # ------------------------------------------------------------------

    async def load_sources(self, manifest: BundleManifest) -> LoadedBundle:
        """
        Fetch the entry file and preload every other source and bibliography.

        Raises:
            ManifestInvalidError: manifest lacks basePrefix / entryPath.
            EntryNotFoundError:   the entry file is absent from the store.

        Non-entry files are fetched leniently: a missing chapter leaves its
        directive unexpanded instead of failing the request.
        """
        manifest.require_valid()
        entry_path = normalize_relative_path(manifest.entry_path.lstrip("/"))

        try:
            entry_bytes = await self._blob_store.download(
                manifest.bucket, manifest.storage_key(entry_path)
            )
        except BlobNotFoundError as exc:
            raise EntryNotFoundError(entry_path, exc.message) from exc

        path_to_text: Dict[str, str] = {entry_path: _decode(entry_bytes)}
        bib_texts: List[str] = []

        for bundle_file in manifest.files:
            path = normalize_relative_path(bundle_file.path.lstrip("/"))
            ext = bundle_file.extension
            if path == entry_path or not (
                ext in _SOURCE_EXTENSIONS or ext in _BIBLIOGRAPHY_EXTENSIONS
            ):
                continue

            try:
                data = await self._blob_store.download(
                    manifest.bucket, manifest.storage_key(path)
                )
            except BlobStoreError as exc:
                logger.warning(
                    "bundle_file_unavailable",
                    extra={
                        "bucket": manifest.bucket,
                        "path": path,
                        "reason": exc.message,
                    },
                )
                continue

            if ext in _BIBLIOGRAPHY_EXTENSIONS:
                bib_texts.append(_decode(data))
            else:
                path_to_text[path] = _decode(data)

        return LoadedBundle(
            manifest=manifest,
            entry_path=entry_path,
            path_to_text=path_to_text,
            bib_texts=bib_texts,
        )

    def expand(self, bundle: LoadedBundle) -> str:
        return expand_includes(
            bundle.entry_text,
            posixpath.dirname(bundle.entry_path),
            bundle.path_to_text,
            frozenset({bundle.entry_path}),
            max_depth=self._settings.max_include_depth,
        )

    async def _merged(self, document: DocumentRecord) -> MergedSource:
        manifest = document.latex_manifest
        if manifest is not None:
            bundle = await self.load_sources(manifest)
            return MergedSource(
                latex=self.expand(bundle),
                bib_texts=bundle.bib_texts,
                manifest=manifest,
            )

        # Single-file documents keep their LaTeX on the record itself.
        if document.metadata.latex and document.metadata.latex.strip():
            return MergedSource(latex=document.metadata.latex)

        raise ManifestInvalidError(
            f"Document '{document.id}' has no LaTeX manifest or LaTeX source."
        )

    def _asset_bucket(self, document: DocumentRecord) -> str:
        """Bucket holding the assets referenced by ``document``."""
        if document.latex_manifest is not None:
            return document.latex_manifest.bucket
        return self._settings.assets_bucket

    def _bucket_guard(self, bucket: str) -> BucketGuard:
        guard = self._bucket_guards.get(bucket)
        if guard is None:
            guard = self._bucket_guards[bucket] = BucketGuard(self._blob_store, bucket)
        return guard

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def merged_source(self, document_id: str) -> str:
        document = await self._document_store.get_document(document_id)
        return (await self._merged(document)).latex

    async def build_preview(self, document_id: str) -> BundlePreview:
        document = await self._document_store.get_document(document_id)
        merged = await self._merged(document)

        entries = merge_bibliographies(merged.bib_texts)
        references = build_reference_section(
            document.id,
            extract_cited_keys(merged.latex),
            {entry.key: entry for entry in entries},
            fallback_limit=self._settings.reference_fallback_limit,
        )

        logger.info(
            "preview_built",
            extra={
                "document_id": document.id,
                "bib_entries": len(entries),
                "has_references": references is not None,
            },
        )
        return BundlePreview(merged_latex=merged.latex, references=references)

    async def build_package(self, document_id: str) -> BundlePackage:
        document = await self._document_store.get_document(document_id)
        merged = await self._merged(document)

        return await self._assembler.assemble(
            main_source=merged.latex,
            doc_id=document.id,
            bucket=self._asset_bucket(document),
            manifest=merged.manifest,
        )

    async def build_package_archive(self, document_id: str) -> bytes:
        return PackageAssembler.to_zip(await self.build_package(document_id))

    async def read_bundle_file(
        self, document_id: str, requested_path: str
    ) -> BundleFileContent:
        reject_traversal(requested_path)

        document = await self._document_store.get_document(document_id)
        manifest = document.latex_manifest
        if manifest is None:
            raise BundleFileNotFoundError(requested_path)
        manifest.require_valid()

        resolved = resolve_bundle_file(manifest.relative_paths, requested_path)
        if resolved is None:
            raise BundleFileNotFoundError(requested_path)

        try:
            data = await self._blob_store.download(
                manifest.bucket, manifest.storage_key(resolved)
            )
        except BlobNotFoundError as exc:
            raise BundleFileNotFoundError(requested_path) from exc

        return BundleFileContent(
            resolved=ResolvedBundleFile(
                requested_path=requested_path,
                resolved_path=resolved,
            ),
            data=data,
            content_type=guess_content_type(resolved),
        )

    async def upload_asset(
        self,
        document_id: str,
        data: bytes,
        mime_type: str,
    ) -> AssetReference:
        """
        Store an asset under a key scoped to ``document_id``.

        Assets land in the bucket packaging reads them from: the manifest's
        bucket for bundles, the configured assets bucket otherwise. Each
        bucket is ensured once per process; if the store reports it missing
        anyway, it is re-ensured and the upload retried once.
        """
        if not data:
            raise BundleValidationError("Asset payload is empty.")

        document = await self._document_store.get_document(document_id)

        ref = AssetReference(key=build_asset_key(document_id, mime_type))
        guard = self._bucket_guard(self._asset_bucket(document))
        bucket = guard.bucket

        await guard.ensure()
        try:
            await self._blob_store.upload(
                bucket, ref.rel_path, data, content_type=mime_type, upsert=False
            )
        except BlobStoreError as exc:
            if not is_bucket_not_found(exc):
                raise
            logger.warning("asset_bucket_missing_on_upload", extra={"bucket": bucket})
            guard.reset()
            await guard.ensure()
            await self._blob_store.upload(
                bucket, ref.rel_path, data, content_type=mime_type, upsert=False
            )

        logger.info(
            "asset_uploaded",
            extra={
                "document_id": document_id,
                "bucket": bucket,
                "asset_key": ref.key,
                "bytes": len(data),
            },
        )
        return ref

    async def read_asset(self, key: str) -> AssetContent:
        """
        Fetch an uploaded asset by key.

        The owning document is taken from the key prefix and must exist; the
        asset is read from the same bucket uploads for that document go to.

        Raises:
            InvalidAssetKeyError: the key does not start with a document id.
            DocumentNotFoundError: the owning document is unknown.
            AssetNotFoundError: nothing is stored under the key.
        """
        document_id = parse_document_id_from_key(key)
        if document_id is None or "/" in key or "\\" in key or ".." in key:
            raise InvalidAssetKeyError(key)

        document = await self._document_store.get_document(document_id)
        ref = AssetReference(key=key)
        guard = self._bucket_guard(self._asset_bucket(document))
        await guard.ensure()

        try:
            data = await self._blob_store.download(guard.bucket, ref.rel_path)
        except BlobNotFoundError as exc:
            raise AssetNotFoundError(key) from exc

        return AssetContent(key=key, data=data, content_type=guess_content_type(key))
