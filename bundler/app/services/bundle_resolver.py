"""
Bundle file lookup.

Maps a requested relative path, possibly without an extension, to the
stored file name. The result is always a path taken from the manifest,
never one built from the request.

Resolution order:
1. reject any request with a ``..`` segment (before the manifest is read)
2. exact match, case-insensitive
3. extension-less request: ``<request>.<ext>`` candidates, preferring
   PREFERRED_EXTENSIONS in order, else the lexicographically smallest
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional

from bundler.app.core.errors import PathTraversalError
from bundler.app.latex.paths import has_extension

PREFERRED_EXTENSIONS = ("pdf", "png", "jpg", "jpeg", "svg", "webp", "gif", "eps")

_SEGMENT_SPLIT_RE = re.compile(r"[\\/]+")


def _normalize_request(requested_path: str) -> str:
    path = requested_path.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def reject_traversal(requested_path: str) -> None:
    if ".." in _SEGMENT_SPLIT_RE.split(requested_path):
        raise PathTraversalError(requested_path)


def resolve_bundle_file(
    manifest_files: Iterable[str],
    requested_path: str,
) -> Optional[str]:
    """
    Resolve ``requested_path`` against the manifest's relative paths.

    Raises:
        PathTraversalError: the request contains a ``..`` segment.

    Returns:
        The original-cased manifest path, or None when nothing matches.
    """
    reject_traversal(requested_path)

    request = _normalize_request(requested_path).lower()
    if not request:
        return None

    lookup: Dict[str, str] = {}
    for path in manifest_files:
        lookup.setdefault(path.lower(), path)

    exact = lookup.get(request)
    if exact is not None:
        return exact

    if has_extension(request):
        return None

    prefix = f"{request}."
    candidates: List[str] = sorted(p for p in lookup if p.startswith(prefix))
    if not candidates:
        return None

    by_extension = {c[len(prefix):]: c for c in candidates}
    for ext in PREFERRED_EXTENSIONS:
        if ext in by_extension:
            return lookup[by_extension[ext]]

    return lookup[candidates[0]]
