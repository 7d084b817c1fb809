"""
Lenient BibTeX scanner.

This is a best-effort extractor for preview purposes, not a BibTeX
grammar. It accepts the shapes real bundles contain:

    @article{doe2020, title={A Study}, author="Doe, J.", year=2020}
    @book(knuth84, title = {The {\\TeX}book})

Rules:
- entry delimiters may be ``{...}`` or ``(...)``; nesting is counted on the
  same delimiter pair only
- the key is everything up to the first comma after the opening delimiter
- values may be brace-delimited, quote-delimited or bare (comma-terminated)
- field names are lower-cased, values trimmed
- the first entry seen for a key wins; later duplicates are discarded
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from bundler.app.schemas.bibliography import BibEntry

logger = logging.getLogger("bundler.latex")

_CLOSING = {"{": "}", "(": ")"}

# Blocks that never carry a citable record.
_NON_ENTRY_TYPES = {"comment", "preamble", "string"}


# ---------------------------------------------------------------------------
# Value scanners
# ---------------------------------------------------------------------------

def _consume_braced(body: str, start: int) -> Tuple[str, int]:
    """Consume ``{...}`` starting at ``start`` (nested braces allowed)."""
    depth = 0
    i = start
    n = len(body)
    while i < n:
        ch = body[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return body[start + 1:i], i + 1
        i += 1
    return body[start + 1:], n


def _consume_quoted(body: str, start: int) -> Tuple[str, int]:
    """Consume ``"..."`` starting at ``start``; ``\\"`` does not terminate."""
    i = start + 1
    n = len(body)
    while i < n:
        if body[i] == '"' and body[i - 1] != "\\":
            return body[start + 1:i], i + 1
        i += 1
    return body[start + 1:], n


def _consume_bare(body: str, start: int) -> Tuple[str, int]:
    i = start
    n = len(body)
    while i < n and body[i] != ",":
        i += 1
    return body[start:i], i


def _parse_fields(body: str) -> Dict[str, str]:
    """Extract ``name = value`` pairs from an entry body (key already removed)."""
    fields: Dict[str, str] = {}
    i = 0
    n = len(body)

    while i < n:
        while i < n and (body[i].isspace() or body[i] == ","):
            i += 1
        if i >= n:
            break

        name_start = i
        while i < n and (body[i].isalnum() or body[i] in "_-:."):
            i += 1
        name = body[name_start:i].lower()

        while i < n and body[i].isspace():
            i += 1
        if not name or i >= n or body[i] != "=":
            # Not a field: resynchronise on the next comma.
            comma = body.find(",", i + 1 if i == name_start else i)
            if comma == -1:
                break
            i = comma + 1
            continue

        i += 1
        while i < n and body[i].isspace():
            i += 1
        if i >= n:
            break

        if body[i] == "{":
            value, i = _consume_braced(body, i)
        elif body[i] == '"':
            value, i = _consume_quoted(body, i)
        else:
            value, i = _consume_bare(body, i)

        fields.setdefault(name, value.strip())

        # Skip anything between the value and the next separator
        # (e.g. "#" concatenations, which are not supported).
        comma = body.find(",", i)
        if comma == -1:
            break
        i = comma + 1

    return fields


# ---------------------------------------------------------------------------
# Entry scanner
# ---------------------------------------------------------------------------

def _find_closing(text: str, open_index: int) -> int:
    """Index of the delimiter closing the one at ``open_index``, or len(text)."""
    opener = text[open_index]
    closer = _CLOSING[opener]
    depth = 0
    for i in range(open_index, len(text)):
        ch = text[i]
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i
    return len(text)


def parse_bibtex(bib_text: str) -> List[BibEntry]:
    """
    Parse ``bib_text`` into entries, in document order.

    Malformed candidates are skipped; scanning then resumes just past the
    offending ``@``.
    """
    entries: List[BibEntry] = []
    seen: set[str] = set()
    n = len(bib_text)
    pos = 0

    while True:
        at = bib_text.find("@", pos)
        if at == -1:
            break
        pos = at + 1

        i = at + 1
        while i < n and bib_text[i].isalpha():
            i += 1
        entry_type = bib_text[at + 1:i].lower()
        while i < n and bib_text[i].isspace():
            i += 1

        if not entry_type or i >= n or bib_text[i] not in _CLOSING:
            continue

        close = _find_closing(bib_text, i)
        body = bib_text[i + 1:close]

        if entry_type in _NON_ENTRY_TYPES:
            pos = close + 1
            continue

        comma = body.find(",")
        if comma == -1:
            key, fields_body = body.strip(), ""
        else:
            key, fields_body = body[:comma].strip(), body[comma + 1:]

        if not key:
            continue

        pos = close + 1

        if key in seen:
            logger.debug("bib_duplicate_key_discarded", extra={"key": key})
            continue
        seen.add(key)

        entries.append(
            BibEntry(
                key=key,
                entry_type=entry_type,
                fields=_parse_fields(fields_body),
            )
        )

    return entries


def merge_bibliographies(bib_texts: Iterable[str]) -> List[BibEntry]:
    """
    Parse several ``.bib`` blobs as one bibliography.

    Blobs are taken in the order given; the first entry seen for a key wins
    across all of them.
    """
    merged: List[BibEntry] = []
    seen: set[str] = set()
    for text in bib_texts:
        for entry in parse_bibtex(text):
            if entry.key in seen:
                continue
            seen.add(entry.key)
            merged.append(entry)
    return merged
