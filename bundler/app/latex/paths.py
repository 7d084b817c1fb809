"""
Include-argument path resolution.

Pure string transforms over manifest-relative POSIX paths. No I/O, never
raises.
"""

import posixpath

DEFAULT_INCLUDE_EXTENSION = ".tex"


def has_extension(path: str) -> bool:
    return bool(posixpath.splitext(posixpath.basename(path))[1])


def normalize_relative_path(path: str) -> str:
    """
    Collapse ``.`` segments and redundant separators.

    Returns ``""`` for empty input and for paths that normalize to the
    bundle root itself.
    """
    if not path:
        return ""
    normalized = posixpath.normpath(path)
    if normalized == ".":
        return ""
    return normalized


def resolve_include_path(current_dir: str, raw_argument: str) -> str:
    """
    Resolve an include directive's argument to a manifest-relative path.

    Args:
        current_dir:
            Manifest-relative directory of the including file
            (``""`` for the bundle root).
        raw_argument:
            The directive argument as captured, possibly still carrying a
            stray ``{`` / ``}`` from a malformed capture.

    Returns:
        The normalized path, with ``.tex`` appended when the argument has no
        extension. ``""`` means "no match" to the caller.
    """
    arg = raw_argument.strip()
    if arg.startswith("{"):
        arg = arg[1:]
    if arg.endswith("}"):
        arg = arg[:-1]
    arg = arg.strip()
    if not arg:
        return ""

    if not has_extension(arg):
        arg = f"{arg}{DEFAULT_INCLUDE_EXTENSION}"

    return normalize_relative_path(posixpath.join(current_dir, arg))
