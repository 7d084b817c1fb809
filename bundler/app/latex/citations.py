import re
from typing import List

# \cite, \citep, \citet*, \parencite, \textcite, \autocite, \nocite, ...
# with up to two optional [...] arguments before the key list.
_CITE_RE = re.compile(
    r"\\[A-Za-z]*cite[A-Za-z]*\*?\s*"
    r"(?:\[[^\]]*\]\s*){0,2}"
    r"\{([^{}]*)\}"
)


def extract_cited_keys(latex_text: str) -> List[str]:
    """
    Return cited keys in first-appearance order, duplicates collapsed.

    ``\\nocite{*}`` is not a key and is ignored.
    """
    keys: dict[str, None] = {}
    for match in _CITE_RE.finditer(latex_text):
        for raw in match.group(1).split(","):
            key = raw.strip()
            if key and key != "*":
                keys.setdefault(key, None)
    return list(keys)
