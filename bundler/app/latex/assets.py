"""
Asset key extraction from ``\\includegraphics`` directives.

Two surface syntaxes reference stored assets:

    \\includegraphics[width=\\linewidth]{\\detokenize{assets/<key>}}
    \\includegraphics[width=\\linewidth]{assets/<key>}

The ``\\detokenize`` wrapper is what the editor emits so that keys with
underscores survive LaTeX's special-character handling; the plain form is
what users and importers write by hand. Paths outside ``assets/`` are not
assets and are ignored here.
"""

import re
from typing import List

from bundler.app.latex.comments import in_comment

_DETOKENIZED_RE = re.compile(
    r"\\includegraphics\s*(?:\[[^\]]*\])?\s*"
    r"\{\s*\\detokenize\s*\{\s*assets/([^{}\s]+?)\s*\}\s*\}"
)

_PLAIN_RE = re.compile(
    r"\\includegraphics\s*(?:\[[^\]]*\])?\s*"
    r"\{\s*assets/([^{}\s]+?)\s*\}"
)


def extract_asset_keys(latex_text: str) -> List[str]:
    """
    Return every referenced asset key, ordered and deduplicated.

    Detokenized references come first, then plain ones; a key referenced
    through both forms appears once.
    Directives inside ``%`` line comments are skipped.
    """
    keys: dict = {}
    for pattern in (_DETOKENIZED_RE, _PLAIN_RE):
        for match in pattern.finditer(latex_text):
            if in_comment(latex_text, match.start()):
                continue
            keys.setdefault(match.group(1), None)
    return list(keys)
