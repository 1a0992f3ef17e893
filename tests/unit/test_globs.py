import pytest

from stagecraft.utils.globs import match_path


@pytest.mark.parametrize(
    "path, pattern",
    [
        ("docs/adr/ADR-001.md", "docs/adr/**"),
        ("docs/adr/todo/ADR-001.md", "docs/adr/**"),
        ("README.md", "**/README.md"),
        ("packages/core/README.md", "**/README.md"),
        ("packages/core/src/index.ts", "packages/**/src/**/*.ts"),
        ("packages/core/src/deep/nested/file.ts", "packages/**/src/**/*.ts"),
        ("vite.config.ts", "*.config.*"),
        ("AGENTS.md", "AGENTS.md"),
        ("a/b.txt", "a/?.txt"),
    ],
)
def test_match_path_matches(path, pattern):
    assert match_path(path, pattern)


@pytest.mark.parametrize(
    "path, pattern",
    [
        ("packages/core/lib/index.ts", "packages/**/src/**/*.ts"),
        ("config/vite.config.ts", "*.config.*"),
        ("docs/adrs/x.md", "docs/adr/**"),
        ("src/index.tsx", "src/*.ts"),
        ("a/bc.txt", "a/?.txt"),
        ("docs/README.md.bak", "**/README.md"),
    ],
)
def test_match_path_rejects(path, pattern):
    assert not match_path(path, pattern)


def test_literal_characters_are_escaped():
    assert match_path("notes(v1).md", "notes(v1).md")
    assert not match_path("notesXv1).md", "notes(v1).md")
