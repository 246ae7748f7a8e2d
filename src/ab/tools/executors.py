"""Workspace tool executors invoked through the tool gateway."""

from __future__ import annotations

import difflib
import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Type

from pydantic import BaseModel

from ..workspace import Workspace, WorkspaceError
from .definitions import (
    EDIT_TOOL,
    READ_TOOL,
    SEARCH_TOOL,
    WRITE_TOOL,
    LineReplaceInput,
    SearchFilesInput,
    ViewInput,
    WriteInput,
)
from .security import SecurityGuard

__all__ = [
    "LineReplaceTool",
    "SearchFilesTool",
    "ToolContext",
    "ToolExecutor",
    "ToolOutput",
    "ViewTool",
    "WriteTool",
    "default_executors",
]

_NEW_FILE_PREVIEW_LINES = 10
_SEARCH_IGNORE = ("*.min.js", "*.map")


@dataclass(slots=True)
class ToolContext:
    """Everything an executor may touch during a call."""

    workspace: Workspace
    guard: SecurityGuard
    max_payload_size: int = 1_000_000
    max_file_size: int = 1_000_000
    max_search_results: int = 100


@dataclass(slots=True)
class ToolOutput:
    content: str
    is_error: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def error(cls, message: str, **metadata: Any) -> "ToolOutput":
        return cls(content=message, is_error=True, metadata=dict(metadata))


class ToolExecutor:
    """Base class for tool executors; ``params`` arrive already validated."""

    name: ClassVar[str]
    input_model: ClassVar[Type[BaseModel]]
    mutates: ClassVar[bool] = False

    def execute(self, params: Any, context: ToolContext) -> ToolOutput:
        raise NotImplementedError


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _line_count(text: str) -> int:
    return text.count("\n") + 1


def _access_denied(path: str) -> ToolOutput:
    return ToolOutput.error(f"Error: Access denied to path '{path}'. Path is not in allowed workspaces.")


class ViewTool(ToolExecutor):
    name = READ_TOOL
    input_model = ViewInput

    def execute(self, params: ViewInput, context: ToolContext) -> ToolOutput:
        path = params.path
        if not context.guard.is_path_allowed(path):
            return _access_denied(path)
        try:
            content = context.workspace.read_text(path)
        except (WorkspaceError, UnicodeDecodeError) as error:
            return ToolOutput.error(f"Error reading file '{path}': {error}")

        metadata: Dict[str, Any] = {
            "path": path,
            "size": len(content.encode("utf-8")),
            "sha256": _sha256(content),
            "line_count": _line_count(content),
            "truncated": False,
        }
        shown = content
        if params.start_line is not None or params.end_line is not None:
            lines = content.split("\n")
            start = params.start_line or 1
            end = min(params.end_line or len(lines), len(lines))
            if start > len(lines) or end < start:
                return ToolOutput.error(
                    f"Error: line range {start}-{end} is outside the file ({len(lines)} lines)"
                )
            shown = "\n".join(lines[start - 1 : end])
            metadata["start_line"] = start
            metadata["end_line"] = end

        encoded = shown.encode("utf-8")
        if len(encoded) > params.max_bytes:
            truncated = encoded[: params.max_bytes].decode("utf-8", errors="ignore")
            metadata["truncated"] = True
            metadata["shown_lines"] = _line_count(truncated)
            shown = (
                f"{truncated}\n\n[File truncated: {len(encoded)} bytes, showing first {params.max_bytes} bytes]"
            )
        return ToolOutput(content=context.guard.redact_secrets(shown), metadata=metadata)


class WriteTool(ToolExecutor):
    name = WRITE_TOOL
    input_model = WriteInput
    mutates = True

    def execute(self, params: WriteInput, context: ToolContext) -> ToolOutput:
        path = params.path
        if not context.guard.is_path_allowed(path):
            return _access_denied(path)
        size = len(params.content.encode("utf-8"))
        limit = min(context.max_payload_size, context.max_file_size)
        if size > limit:
            return ToolOutput.error(f"Error: Content size ({size} bytes) exceeds limit ({limit} bytes)")

        try:
            existing = context.workspace.exists(path)
            if existing and not params.overwrite:
                return ToolOutput.error(f"Error: File '{path}' already exists. Set overwrite=true to replace it.")
            previous = context.workspace.read_text(path) if existing else ""
            context.workspace.write_text(path, params.content)
        except (WorkspaceError, UnicodeDecodeError) as error:
            return ToolOutput.error(f"Error writing file '{path}': {error}")

        if existing:
            summary = "\n".join(
                difflib.unified_diff(
                    previous.split("\n"),
                    params.content.split("\n"),
                    fromfile=path,
                    tofile=path,
                    lineterm="",
                    n=1,
                )
            )
        else:
            lines = params.content.split("\n")
            preview = "\n".join(
                f"{number}+ {line}" for number, line in enumerate(lines[:_NEW_FILE_PREVIEW_LINES], start=1)
            )
            more = ""
            if len(lines) > _NEW_FILE_PREVIEW_LINES:
                more = f"\n... {len(lines) - _NEW_FILE_PREVIEW_LINES} more lines"
            summary = f"+++ {path} (new file)\n{preview}{more}"

        metadata: Dict[str, Any] = {
            "path": path,
            "size": size,
            "sha256": _sha256(params.content),
            "line_count": _line_count(params.content),
            "overwritten": existing,
        }
        if existing:
            metadata["old_sha256"] = _sha256(previous)
        return ToolOutput(content=f"Successfully wrote '{path}'\n\n{summary}", metadata=metadata)


class LineReplaceTool(ToolExecutor):
    name = EDIT_TOOL
    input_model = LineReplaceInput
    mutates = True

    def execute(self, params: LineReplaceInput, context: ToolContext) -> ToolOutput:
        path = params.path
        if not context.guard.is_path_allowed(path):
            return _access_denied(path)
        try:
            content = context.workspace.read_text(path)
        except (WorkspaceError, UnicodeDecodeError) as error:
            return ToolOutput.error(f"Error replacing lines in '{path}': {error}")

        lines = content.split("\n")
        start = params.locator.start_line
        end = params.locator.end_line
        if start > len(lines):
            return ToolOutput.error(f"Error: start_line {start} out of range (file has {len(lines)} lines)")
        if end < start or end > len(lines):
            return ToolOutput.error(
                f"Error: end_line {end} invalid (must be >= start_line and <= {len(lines)})"
            )

        target_lines = lines[start - 1 : end]
        target_text = "\n".join(target_lines)
        needle = params.locator.needle
        if needle:
            occurrences = content.count(needle)
            if occurrences == 0:
                preview = target_text if len(target_text) <= 100 else target_text[:100] + "..."
                return ToolOutput.error(
                    f'Error: Needle text not found in file.\n\nExpected to find:\n"{needle}"\n\n'
                    f'But in lines {start}-{end} found:\n"{preview}"\n\n'
                    f"Use {READ_TOOL} to verify current file contents and exact text to match.",
                    path=path,
                    needle_mismatch=True,
                )
            if occurrences > 1:
                return ToolOutput.error(
                    f"Error: Needle text appears {occurrences} times in file. "
                    "Provide more context to create a unique match.",
                    path=path,
                    needle_occurrences=occurrences,
                )
            if needle not in target_text:
                return ToolOutput.error(
                    f"Error: Needle found in file but not at specified line range {start}-{end}.\n\n"
                    f"Use {SEARCH_TOOL} to locate the correct line numbers.",
                    path=path,
                    needle_location_mismatch=True,
                )

        replacement_lines = params.replacement.split("\n")
        updated = "\n".join(lines[: start - 1] + replacement_lines + lines[end:])
        new_sha = _sha256(updated)
        try:
            context.workspace.write_text(path, updated)
            verified = not params.verify_after or _sha256(context.workspace.read_text(path)) == new_sha
        except (WorkspaceError, UnicodeDecodeError) as error:
            return ToolOutput.error(f"Error replacing lines in '{path}': {error}")

        replaced = end - start + 1
        net = len(replacement_lines) - replaced
        if net == 0:
            summary = f"{replaced} line(s)"
        else:
            summary = f"{replaced} line(s) -> {len(replacement_lines)} line(s) ({'+' if net > 0 else ''}{net})"
        diff = "\n".join(
            [f"--- {path}", f"+++ {path}", f"@@ -{start},{replaced} +{start},{len(replacement_lines)} @@"]
            + [f"-{line}" for line in target_lines]
            + [f"+{line}" for line in replacement_lines]
        )
        warning = ""
        if not verified:
            warning = "\n\nWarning: Verification failed - file content differs from expected."
        return ToolOutput(
            content=f"Successfully replaced lines {start}-{end} in '{path}' ({summary})\n\n{diff}{warning}",
            metadata={
                "path": path,
                "start_line": start,
                "end_line": end,
                "lines_replaced": replaced,
                "new_line_count": len(replacement_lines),
                "net_line_change": net,
                "original_sha256": _sha256(content),
                "new_sha256": new_sha,
                "verified": verified,
                "needle_verified": bool(needle),
            },
        )


class SearchFilesTool(ToolExecutor):
    name = SEARCH_TOOL
    input_model = SearchFilesInput

    def execute(self, params: SearchFilesInput, context: ToolContext) -> ToolOutput:
        try:
            pattern = re.compile(params.query if params.regex else re.escape(params.query))
        except re.error as error:
            return ToolOutput.error(f"Invalid regex pattern: {error}")

        limit = min(params.max_results, context.max_search_results)
        files = [
            path
            for path in context.workspace.iter_files(params.glob, ignore=_SEARCH_IGNORE)
            if context.guard.is_path_allowed(path)
        ]
        matches: List[str] = []
        for path in files:
            try:
                lines = context.workspace.read_text(path).split("\n")
            except (WorkspaceError, UnicodeDecodeError):
                # binary or unreadable files are not searchable
                continue
            for number, line in enumerate(lines, start=1):
                if not pattern.search(line):
                    continue
                matches.append(_render_match(path, number, lines, params.context_lines))
                if len(matches) >= limit:
                    break
            if len(matches) >= limit:
                break

        metadata = {
            "query": params.query,
            "glob": params.glob,
            "regex": params.regex,
            "files_searched": len(files),
            "match_count": len(matches),
        }
        if not matches:
            return ToolOutput(content=f'No matches found for "{params.query}" in {params.glob}', metadata=metadata)
        body = context.guard.redact_secrets("\n---\n".join(matches))
        return ToolOutput(content=f"Found {len(matches)} match(es) in {params.glob}:\n\n{body}", metadata=metadata)


def _render_match(path: str, number: int, lines: List[str], context_lines: int) -> str:
    rendered = [f"{path}:{number}: {lines[number - 1]}"]
    if context_lines:
        first = max(1, number - context_lines)
        last = min(len(lines), number + context_lines)
        before = [f"  {line_no} | {lines[line_no - 1]}" for line_no in range(first, number)]
        after = [f"  {line_no} | {lines[line_no - 1]}" for line_no in range(number + 1, last + 1)]
        rendered = before + rendered + after
    return "\n".join(rendered)


def default_executors() -> List[ToolExecutor]:
    return [ViewTool(), WriteTool(), LineReplaceTool(), SearchFilesTool()]
