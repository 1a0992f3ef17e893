"""Path glob matching with ``**`` directory wildcards."""

from __future__ import annotations

import re
from functools import lru_cache


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a slash-separated glob into a compiled regex.

    ``*`` and ``?`` never cross a ``/``. ``**/`` matches zero or more whole
    directories and a trailing ``**`` matches everything below.
    """
    parts: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    i += 1
                    parts.append("(?:[^/]*/)*")
                else:
                    parts.append(".*")
                continue
            parts.append("[^/]*")
        elif c == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(c))
        i += 1
    return re.compile("".join(parts) + r"\Z")


def match_path(path: str, pattern: str) -> bool:
    """Return ``True`` if ``path`` matches ``pattern`` in full."""
    return glob_to_regex(pattern).match(path) is not None
