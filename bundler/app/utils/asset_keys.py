"""
Document-scoped asset keys.

The owning document id is encoded into every asset key so that access can
be enforced without a separate lookup table:

    <documentId>__<random>.<ext>

IMPORTANT:
- A key is only ever admitted for the document named by its prefix.
- Keys are opaque; nothing else may be inferred from the random part.
"""

import re
import uuid
from typing import Optional

ASSET_KEY_SEPARATOR = "__"

_UUID_RE = re.compile(r"^[0-9a-fA-F-]{36}$")

_MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
}


def extension_for_mime(mime_type: str) -> str:
    """Map a MIME type to a file extension; unknown types stay opaque binaries."""
    return _MIME_EXTENSIONS.get(mime_type.strip().lower(), "bin")


def build_asset_key(document_id: str, mime_type: str) -> str:
    return (
        f"{document_id}{ASSET_KEY_SEPARATOR}"
        f"{uuid.uuid4().hex}.{extension_for_mime(mime_type)}"
    )


def document_prefix(document_id: str) -> str:
    return f"{document_id}{ASSET_KEY_SEPARATOR}"


def is_owned_by(key: str, document_id: str) -> bool:
    prefix = document_prefix(document_id)
    return bool(document_id) and key.startswith(prefix) and len(key) > len(prefix)


def parse_document_id_from_key(key: str) -> Optional[str]:
    """
    Return the owning document id encoded in ``key``, or None.

    Document ids are UUIDs; anything else in the prefix position is
    rejected.
    """
    idx = key.find(ASSET_KEY_SEPARATOR)
    if idx <= 0:
        return None
    candidate = key[:idx]
    if not _UUID_RE.match(candidate):
        return None
    return candidate
