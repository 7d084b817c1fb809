import pytest

from bundler.app.latex.paths import (
    has_extension,
    normalize_relative_path,
    resolve_include_path,
)


@pytest.mark.parametrize(
    "current_dir, argument, expected",
    [
        ("", "chapter1", "chapter1.tex"),
        ("", "chapter1.tex", "chapter1.tex"),
        ("chapters", "intro", "chapters/intro.tex"),
        ("chapters", "../main", "main.tex"),
        ("", "./a/./b", "a/b.tex"),
        ("", "  spaced  ", "spaced.tex"),
        ("", "{braced}", "braced.tex"),
        ("", "figures/plot.pdf", "figures/plot.pdf"),
        ("v1.2", "notes", "v1.2/notes.tex"),
    ],
)
def test_resolve_include_path(current_dir, argument, expected):
    assert resolve_include_path(current_dir, argument) == expected


@pytest.mark.parametrize("argument", ["", "   ", "{}", "{ }"])
def test_empty_argument_resolves_to_nothing(argument):
    assert resolve_include_path("chapters", argument) == ""


def test_extension_is_read_from_the_basename_only():
    assert has_extension("a.tex")
    assert not has_extension("dir.v2/file")
    assert not has_extension("")


@pytest.mark.parametrize(
    "path, expected",
    [
        ("", ""),
        (".", ""),
        ("./", ""),
        ("a//b/", "a/b"),
        ("a/./b/../c", "a/c"),
    ],
)
def test_normalize_relative_path(path, expected):
    assert normalize_relative_path(path) == expected
