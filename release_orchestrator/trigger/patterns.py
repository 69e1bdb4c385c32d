"""Glob patterns for path and branch filters.

The dialect follows CI workflow filter patterns:
- `*` matches zero or more characters except `/`
- `**` matches zero or more of any character
- `?` matches zero or one of the preceding character
- `+` matches one or more of the preceding character
- `?` or `+` not preceded by a single character or class matches itself
- `[...]` matches one character from the class
- a leading `!` negates a pattern inside an ordered pattern list
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a filter glob into a compiled regular expression.

    Args:
        pattern: Glob pattern without a leading '!'.

    Returns:
        Compiled regex matching the whole string.

    Raises:
        ValueError: If a character class is not terminated.
    """
    parts: list[str] = []
    # Whether the last part is a single-character atom a quantifier can follow
    quantifiable = False
    i = 0
    n = len(pattern)
    while i < n:
        char = pattern[i]
        if char == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                parts.append(".*")
                quantifiable = False
                i += 2
                continue
            parts.append("[^/]*")
            quantifiable = False
        elif char in "?+":
            parts.append(char if quantifiable else re.escape(char))
            quantifiable = False
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                raise ValueError(f"unterminated character class in '{pattern}'")
            parts.append("[" + pattern[i + 1 : end].replace("\\", "\\\\") + "]")
            quantifiable = True
            i = end + 1
            continue
        else:
            parts.append(re.escape(char))
            quantifiable = True
        i += 1
    return re.compile("".join(parts) + r"\Z")


def match_pattern(pattern: str, value: str) -> bool:
    """Return True if value matches the glob pattern in full."""
    return compile_pattern(pattern).match(value) is not None


def is_filtered(value: str, patterns: Iterable[str]) -> bool:
    """Evaluate an ordered pattern list against a value.

    Patterns are applied in order and the last matching one decides:
    a plain pattern filters the value out, a '!' pattern brings it back.

    Args:
        value: Path or branch name.
        patterns: Ordered patterns, optionally '!'-prefixed.

    Returns:
        True if the value is filtered out.
    """
    filtered = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if filtered and match_pattern(pattern[1:], value):
                filtered = False
        elif not filtered and match_pattern(pattern, value):
            filtered = True
    return filtered


__all__ = ["compile_pattern", "is_filtered", "match_pattern"]
