"""
Stable IR node identifiers.

Node ids must match the ones the editor derives for the same document,
so the hashing scheme is fixed:

    base36( FNV-1a-32( "<docId>:<nodeType>:<path>" ) )

The hash runs over UTF-16 code units, which is what the editor hashes.
"""

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def fnv1a32(text: str) -> int:
    encoded = text.encode("utf-16-le")
    value = _FNV_OFFSET_BASIS
    for i in range(0, len(encoded), 2):
        value ^= encoded[i] | (encoded[i + 1] << 8)
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return value


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def stable_node_id(*, doc_id: str, node_type: str, path: str) -> str:
    return to_base36(fnv1a32(f"{doc_id}:{node_type}:{path}"))
