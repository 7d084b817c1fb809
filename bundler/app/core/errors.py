"""
Error taxonomy for the LaTeX bundle engine.

Two families reach callers:

- validation errors (malformed manifest, traversal attempts, missing
  assets). These are retryable by the user once the input is fixed and
  always carry the complete list of problems.
- not-found errors (document, entry file, requested bundle file).

Conditions handled internally (include cycles, unresolved includes,
citations without a bibliography entry) are never raised.
"""

from __future__ import annotations

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from bundler.app.schemas.package import MissingAsset


class BundleError(Exception):
    """Base class for every error raised by the engine."""

    code = "BUNDLE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> Optional[object]:
        return None


# ---------------------------------------------------------------------------
# Validation class
# ---------------------------------------------------------------------------

class BundleValidationError(BundleError):
    code = "VALIDATION_ERROR"


class ManifestInvalidError(BundleValidationError):
    code = "MANIFEST_INVALID"


class PathTraversalError(BundleValidationError):
    code = "PATH_TRAVERSAL"

    def __init__(self, requested_path: str) -> None:
        super().__init__(
            f"Requested path '{requested_path}' contains a '..' segment."
        )
        self.requested_path = requested_path


class MissingAssetsError(BundleValidationError):
    """
    Raised once per package build, with every diagnostic collected.

    Callers must never observe a second, separate failure for a different
    key on a retry of the same input.
    """

    code = "MISSING_ASSETS"

    def __init__(self, missing: List["MissingAsset"]) -> None:
        keys = ", ".join(m.key for m in missing)
        super().__init__(
            f"{len(missing)} referenced file(s) could not be packaged: {keys}"
        )
        self.missing = list(missing)

    def details(self) -> object:
        return [m.model_dump() for m in self.missing]


class InvalidAssetKeyError(BundleValidationError):
    code = "INVALID_ASSET_KEY"

    def __init__(self, key: str) -> None:
        super().__init__(f"'{key}' is not a document-scoped asset key.")
        self.key = key


class PackageTooLargeError(BundleValidationError):
    code = "PACKAGE_TOO_LARGE"

    def __init__(self, total_bytes: int, limit_bytes: int) -> None:
        super().__init__(
            f"Package size {total_bytes} bytes exceeds the "
            f"{limit_bytes} byte limit."
        )
        self.total_bytes = total_bytes
        self.limit_bytes = limit_bytes


# ---------------------------------------------------------------------------
# Not-found class
# ---------------------------------------------------------------------------

class BundleNotFoundError(BundleError):
    code = "NOT_FOUND"


class DocumentNotFoundError(BundleNotFoundError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document '{document_id}' not found.")
        self.document_id = document_id


class EntryNotFoundError(BundleNotFoundError):
    def __init__(self, entry_path: str, reason: str) -> None:
        super().__init__(
            f"Entry file '{entry_path}' is not available: {reason}"
        )
        self.entry_path = entry_path


class BundleFileNotFoundError(BundleNotFoundError):
    def __init__(self, requested_path: str) -> None:
        super().__init__(f"Bundle file '{requested_path}' not found.")
        self.requested_path = requested_path


class AssetNotFoundError(BundleNotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Asset '{key}' not found.")
        self.key = key


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class BlobStoreError(Exception):
    """
    Failure reported by the blob store.

    ``transient`` marks failures worth retrying (transport errors, 5xx).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.transient = transient


class BlobNotFoundError(BlobStoreError):
    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(
            f"Object '{key}' not found in bucket '{bucket}'",
            status_code=404,
        )
