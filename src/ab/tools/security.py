"""Glob-based path policy and secret redaction for tool executions."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Pattern, Sequence

__all__ = ["SecurityGuard", "glob_to_regex"]

_SPECIALS = set(".+^${}()|[]\\")


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> Pattern[str]:
    """Compile a glob where ``**/`` spans zero or more directories.

    ``**`` matches anything, ``*`` anything except ``/`` and ``?`` a single
    non-separator character.
    """
    out = ["^"]
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "*":
            if pattern[index + 1 : index + 2] == "*":
                if pattern[index + 2 : index + 3] == "/":
                    out.append("(?:.*/)?")
                    index += 3
                else:
                    out.append(".*")
                    index += 2
            else:
                out.append("[^/]*")
                index += 1
        elif char == "?":
            out.append("[^/]")
            index += 1
        else:
            out.append("\\" + char if char in _SPECIALS else char)
            index += 1
    out.append("$")
    return re.compile("".join(out))


class SecurityGuard:
    """Decide which workspace paths tools may touch."""

    def __init__(
        self,
        allowed: Sequence[str],
        denied: Sequence[str] = (),
        secret_patterns: Iterable[str] = (),
    ) -> None:
        self._allowed = tuple(allowed)
        self._denied = tuple(denied)
        self._secrets = tuple(re.compile(pattern) for pattern in secret_patterns)

    def is_path_allowed(self, path: str) -> bool:
        """Denied globs are checked first and always win."""
        normalised = path.replace("\\", "/").lstrip("/")
        if ".." in normalised.split("/"):
            return False
        if any(glob_to_regex(pattern).match(normalised) for pattern in self._denied):
            return False
        return any(glob_to_regex(pattern).match(normalised) for pattern in self._allowed)

    def redact_secrets(self, content: str) -> str:
        redacted = content
        for pattern in self._secrets:
            redacted = pattern.sub("[REDACTED]", redacted)
        return redacted
