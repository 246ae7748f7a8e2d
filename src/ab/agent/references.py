"""Static detection of references to files that were never written."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from typing import Callable, Collection, List, Mapping, Optional, Sequence

__all__ = [
    "MissingReference",
    "find_missing_references",
    "format_missing_warning",
    "scan_references",
]

MARKUP_EXTENSIONS = (".html", ".htm")
MODULE_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")
_RESOLUTION_SUFFIXES = ("", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".json")
_INDEX_FILES = ("index.js", "index.jsx", "index.ts", "index.tsx")

_SCRIPT_SRC = re.compile(r"""<script[^>]+src=["']([^"']+)["']""", re.IGNORECASE)
_LINK_HREF = re.compile(r"""<link[^>]+href=["']([^"']+)["'][^>]*>""", re.IGNORECASE)
_STATIC_IMPORT = re.compile(
    r"""^\s*(?:import|export)\s+(?:[\w*{}\s,$]+?\s+from\s+)?["'](\.{1,2}/[^"']+)["']""",
    re.MULTILINE,
)
_DYNAMIC_IMPORT = re.compile(r"""\b(?:require|import)\(\s*["'](\.{1,2}/[^"']+)["']\s*\)""")
_EXTERNAL = re.compile(r"^(?:[a-z][a-z0-9+.\-]*:|//)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class MissingReference:
    source: str
    tag: str
    attr: str
    target: str

    def describe(self) -> str:
        if self.tag == "import":
            return f'{self.source} imports "{self.target}" but {self.target} was not created'
        return f'{self.source} references <{self.tag} {self.attr}="{self.target}"> but {self.target} was not created'


@dataclass(frozen=True, slots=True)
class _Reference:
    tag: str
    attr: str
    target: str


def scan_references(path: str, content: str) -> List[_Reference]:
    """Return local script, stylesheet and relative module references in ``content``."""
    lowered = path.lower()
    found: List[_Reference] = []
    if lowered.endswith(MARKUP_EXTENSIONS):
        for match in _SCRIPT_SRC.finditer(content):
            found.append(_Reference("script", "src", match.group(1)))
        for match in _LINK_HREF.finditer(content):
            if "stylesheet" in match.group(0).lower():
                found.append(_Reference("link", "href", match.group(1)))
    elif lowered.endswith(MODULE_EXTENSIONS):
        for pattern in (_STATIC_IMPORT, _DYNAMIC_IMPORT):
            for match in pattern.finditer(content):
                found.append(_Reference("import", "from", match.group(1)))
    return [reference for reference in found if _is_local(reference.target)]


def _is_local(target: str) -> bool:
    stripped = target.strip()
    return bool(stripped) and not _EXTERNAL.match(stripped)


def _normalise(source: str, target: str) -> str:
    clean = re.split(r"[?#]", target.strip(), maxsplit=1)[0]
    if clean.startswith("/"):
        return posixpath.normpath(clean.lstrip("/"))
    return posixpath.normpath(posixpath.join(posixpath.dirname(source), clean))


def _candidates(reference: _Reference, resolved: str) -> Sequence[str]:
    if reference.tag != "import":
        return (resolved,)
    options = [resolved + suffix for suffix in _RESOLUTION_SUFFIXES]
    options.extend(posixpath.join(resolved, name) for name in _INDEX_FILES)
    return options


def find_missing_references(
    written: Mapping[str, str],
    created: Collection[str],
    exists: Optional[Callable[[str], bool]] = None,
) -> List[MissingReference]:
    """Flag references in ``written`` files that resolve to no known file.

    ``created`` holds paths written during the current request; ``exists``
    reports files already present in the workspace.
    """
    known = {posixpath.normpath(path.lstrip("/")) for path in created}
    missing: List[MissingReference] = []
    for source, content in written.items():
        for reference in scan_references(source, content):
            resolved = _normalise(source, reference.target)
            options = _candidates(reference, resolved)
            if any(option in known for option in options):
                continue
            if exists is not None and not resolved.startswith(".."):
                if any(_safe_exists(exists, option) for option in options):
                    continue
            missing.append(MissingReference(source, reference.tag, reference.attr, reference.target))
    return missing


def _safe_exists(exists: Callable[[str], bool], path: str) -> bool:
    try:
        return exists(path)
    except OSError:
        return False


def format_missing_warning(missing: Sequence[MissingReference]) -> str:
    """Render the warning appended to the last tool result of a turn."""
    if not missing:
        return ""
    lines = "\n".join(f"  - {reference.describe()}" for reference in missing)
    return (
        f"\n\n⚠️ WARNING: Missing file references detected:\n{lines}\n\n"
        "You MUST create these files in your next response to make the app functional."
    )
