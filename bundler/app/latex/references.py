"""
Synthesized "References" section for previews and outlines.

The section is derived, never authored: it is rebuilt from the merged
source's citations and the bundle bibliography on every call.

Selection policy:
- citations present: cited keys that have a bibliography entry, in
  citation order (keys without an entry are dropped silently)
- no citations: the first ``fallback_limit`` entries in parse order, so an
  imported bundle with a bibliography but no detected citations still
  shows something useful
- nothing selected: no section at all
"""

from __future__ import annotations

import re
from typing import List, Mapping, Optional, Sequence

from bundler.app.schemas.bibliography import BibEntry
from bundler.app.schemas.ir import ListNode, SectionNode
from bundler.app.utils.node_ids import stable_node_id

REFERENCES_TITLE = "References"
DEFAULT_FALLBACK_LIMIT = 50

TITLE_MAX_CHARS = 200
AUTHOR_MAX_CHARS = 160
YEAR_MAX_CHARS = 16

FIELD_SEPARATOR = " — "
ELLIPSIS = "…"

_WHITESPACE_RE = re.compile(r"\s+")


def clamp(value: Optional[str], max_chars: int) -> str:
    """Collapse whitespace, drop TeX grouping braces, truncate with an ellipsis."""
    if not value:
        return ""
    text = value.replace("{", "").replace("}", "")
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1].rstrip() + ELLIPSIS


def format_reference_line(entry: BibEntry) -> str:
    parts = [
        clamp(entry.field("title"), TITLE_MAX_CHARS),
        clamp(entry.field("author"), AUTHOR_MAX_CHARS),
        clamp(entry.field("year"), YEAR_MAX_CHARS),
    ]
    details = FIELD_SEPARATOR.join(p for p in parts if p)
    if not details:
        return f"[{entry.key}]"
    return f"[{entry.key}] {details}"


def select_entries(
    cited_keys: Sequence[str],
    entries_by_key: Mapping[str, BibEntry],
    fallback_limit: int = DEFAULT_FALLBACK_LIMIT,
) -> List[BibEntry]:
    if cited_keys:
        return [entries_by_key[k] for k in cited_keys if k in entries_by_key]
    return list(entries_by_key.values())[:fallback_limit]


def build_reference_section(
    doc_id: str,
    cited_keys: Sequence[str],
    entries_by_key: Mapping[str, BibEntry],
    *,
    fallback_limit: int = DEFAULT_FALLBACK_LIMIT,
) -> Optional[SectionNode]:
    """
    Build the References section, or None when there is nothing to list.

    ``entries_by_key`` must preserve parse order; the fallback path relies
    on it.
    """
    selected = select_entries(cited_keys, entries_by_key, fallback_limit)
    if not selected:
        return None

    return SectionNode(
        id=stable_node_id(doc_id=doc_id, node_type="section", path="references"),
        level=1,
        title=REFERENCES_TITLE,
        children=[
            ListNode(
                id=stable_node_id(
                    doc_id=doc_id, node_type="list", path="references/0"
                ),
                ordered=False,
                items=[format_reference_line(e) for e in selected],
            )
        ],
    )
