"""
Asset validation and collection.

Every ``assets/<key>`` reference in a LaTeX source is checked before a
package may be built:

1. Ownership: the key must be scoped to the requesting document
   (``<documentId>__<suffix>``). Keys failing this check are NEVER
   downloaded and NEVER admitted into a package.
2. Availability: the object must download from the bundle bucket at
   ``assets/<key>`` with a non-empty payload.

Batch policy:
    Problems are collected, not raised. The call returns either the full
    set of collected files or the full set of diagnostics, never a mix, so
    a user fixing figures sees every problem in one pass.

Downloads are issued sequentially in extraction order; diagnostic order is
therefore extraction order.

Error handling policy:
    Only BlobStoreError is caught around downloads. Anything else indicates
    a bug and propagates.
"""

from __future__ import annotations

import logging
from typing import List

from bundler.app.core.errors import BlobNotFoundError, BlobStoreError
from bundler.app.latex.assets import extract_asset_keys
from bundler.app.schemas.package import (
    AssetReference,
    AssetValidationResult,
    MissingAsset,
    MissingAssetKind,
    PackageFile,
)
from bundler.app.storage.blob_store import BlobStore
from bundler.app.utils.asset_keys import document_prefix, is_owned_by

logger = logging.getLogger("bundler.assets")

# Ownership violations go to their own category for security review.
security_logger = logging.getLogger("bundler.security")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _key_shape_problem(key: str) -> str | None:
    """Keys are flat object names; anything path-like is rejected."""
    if "/" in key or "\\" in key:
        return "asset key must not contain path separators"
    if ".." in key:
        return "asset key must not contain '..'"
    return None


def _ownership_diagnostic(key: str, doc_id: str) -> MissingAsset | None:
    if not is_owned_by(key, doc_id):
        security_logger.warning(
            "asset_ownership_violation",
            extra={"asset_key": key, "document_id": doc_id},
        )
        return MissingAsset(
            key=key,
            reason=(
                f"asset key is not scoped to this document "
                f"(expected prefix '{document_prefix(doc_id)}')"
            ),
            kind=MissingAssetKind.OWNERSHIP_MISMATCH,
        )

    problem = _key_shape_problem(key)
    if problem:
        security_logger.warning(
            "asset_key_rejected",
            extra={"asset_key": key, "document_id": doc_id, "reason": problem},
        )
        return MissingAsset(
            key=key,
            reason=problem,
            kind=MissingAssetKind.INVALID_KEY,
        )

    return None


# ---------------------------------------------------------------------------
# Public check entry point
# ---------------------------------------------------------------------------

async def validate_assets(
    latex_text: str,
    doc_id: str,
    blob_store: BlobStore,
    bucket: str,
) -> AssetValidationResult:
    """
    Validate and collect every asset referenced by ``latex_text``.

    Args:
        latex_text: Merged LaTeX source.
        doc_id:     Document the package is being built for.
        blob_store: Source of asset bytes.
        bucket:     Bundle bucket (from the manifest).

    Returns:
        ``ok=True`` with one PackageFile per key, or ``ok=False`` with one
        MissingAsset per failing key.
    """
    collected: List[PackageFile] = []
    missing: List[MissingAsset] = []

    for key in extract_asset_keys(latex_text):
        diagnostic = _ownership_diagnostic(key, doc_id)
        if diagnostic is not None:
            missing.append(diagnostic)
            continue

        ref = AssetReference(key=key)

        try:
            data = await blob_store.download(bucket, ref.rel_path)
        except BlobNotFoundError as exc:
            missing.append(
                MissingAsset(
                    key=key,
                    reason=exc.message,
                    kind=MissingAssetKind.DOWNLOAD_FAILED,
                )
            )
            continue
        except BlobStoreError as exc:
            logger.warning(
                "asset_download_failed",
                extra={
                    "asset_key": key,
                    "bucket": bucket,
                    "status_code": exc.status_code,
                },
            )
            missing.append(
                MissingAsset(
                    key=key,
                    reason=exc.message,
                    kind=MissingAssetKind.DOWNLOAD_FAILED,
                )
            )
            continue

        if not data:
            missing.append(
                MissingAsset(
                    key=key,
                    reason="asset payload is empty",
                    kind=MissingAssetKind.EMPTY_PAYLOAD,
                )
            )
            continue

        collected.append(PackageFile(rel_path=ref.rel_path, data=data))

    if missing:
        logger.info(
            "asset_validation_failed",
            extra={"document_id": doc_id, "missing": len(missing)},
        )
        return AssetValidationResult(ok=False, missing=missing)

    return AssetValidationResult(ok=True, extra_files=collected)
