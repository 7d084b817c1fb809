"""
LaTeX line-comment detection shared by the directive scanners.
"""

import re

_UNESCAPED_PERCENT_RE = re.compile(r"(?<!\\)%")


def in_comment(text: str, index: int) -> bool:
    """True if ``index`` follows an unescaped ``%`` on the same line."""
    line_start = text.rfind("\n", 0, index) + 1
    return bool(_UNESCAPED_PERCENT_RE.search(text, line_start, index))
