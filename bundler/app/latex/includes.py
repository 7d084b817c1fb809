"""
Recursive inlining of ``\\input`` / ``\\include`` / ``\\subfile`` directives.

Expansion works over a preloaded ``path -> text`` map and never performs
I/O. Policy:

- unresolved include: directive left verbatim (partial bundles still render)
- include cycle: directive replaced by a single-line skip marker
- depth ceiling: text returned unexpanded beyond ``max_depth`` levels

Directives are expanded in occurrence order, left to right, top to bottom.
"""

from __future__ import annotations

import logging
import posixpath
import re
from typing import FrozenSet, Mapping

from bundler.app.latex.comments import in_comment
from bundler.app.latex.paths import resolve_include_path

logger = logging.getLogger("bundler.latex")

MAX_INCLUDE_DEPTH = 25

MARKER_PREFIX = "% [bundler]"

# \input{...} / \include{...} / \subfile{...}, or the bare "\input file" form.
# The braced argument tolerates one level of stray braces; the resolver
# strips them.
_INCLUDE_RE = re.compile(
    r"\\(input|include|subfile)(?![A-Za-z@])\s*"
    r"(?:\{((?:[^{}]|\{[^{}]*\})*)\}|([^\s{}\\%]+))"
)


def begin_marker(path: str) -> str:
    return f"{MARKER_PREFIX} begin include: {path}"


def end_marker(path: str) -> str:
    return f"{MARKER_PREFIX} end include: {path}"


def skip_marker(path: str) -> str:
    return f"{MARKER_PREFIX} skipped recursive include: {path}"


def _as_own_lines(block: str, text: str, start: int, end: int) -> str:
    # Markers are comments: keep surrounding source off their lines.
    if start > 0 and text[start - 1] != "\n":
        block = "\n" + block
    if end < len(text) and text[end] not in "\r\n":
        block = block + "\n"
    return block


def expand_includes(
    text: str,
    current_dir: str,
    path_to_text: Mapping[str, str],
    visited: FrozenSet[str] = frozenset(),
    depth: int = 0,
    *,
    max_depth: int = MAX_INCLUDE_DEPTH,
) -> str:
    """
    Inline every resolvable include directive in ``text``.

    Args:
        text:
            Source of the file being expanded.
        current_dir:
            Manifest-relative directory of that file (``""`` at the root).
        path_to_text:
            Preloaded bundle sources keyed by manifest-relative path.
        visited:
            Paths on the current include chain (the file being expanded and
            its ancestors). Immutable: each nested call receives its own set,
            so sibling includes of the same file both expand while a file
            including one of its ancestors is skipped exactly once.
        depth:
            Nesting level of ``text``.
        max_depth:
            At this level ``text`` is returned unexpanded.
    """
    if depth >= max_depth:
        logger.warning(
            "include_depth_ceiling_reached",
            extra={"depth": depth, "current_dir": current_dir},
        )
        return text

    def _replace(match: re.Match) -> str:
        if in_comment(text, match.start()):
            return match.group(0)

        raw_argument = match.group(2) if match.group(2) is not None else match.group(3)
        resolved = resolve_include_path(current_dir, raw_argument or "")

        if not resolved or resolved not in path_to_text:
            logger.debug(
                "include_unresolved",
                extra={"directive": match.group(0), "resolved": resolved},
            )
            return match.group(0)

        if resolved in visited:
            logger.info(
                "include_cycle_skipped",
                extra={"path": resolved, "depth": depth},
            )
            return _as_own_lines(
                skip_marker(resolved), text, match.start(), match.end()
            )

        expanded = expand_includes(
            path_to_text[resolved],
            posixpath.dirname(resolved),
            path_to_text,
            visited | {resolved},
            depth + 1,
            max_depth=max_depth,
        )

        block = "\n".join(
            (begin_marker(resolved), expanded, end_marker(resolved))
        )
        return _as_own_lines(block, text, match.start(), match.end())

    return _INCLUDE_RE.sub(_replace, text)
