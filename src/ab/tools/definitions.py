"""Tool names, input models and the definitions advertised to the model."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator

__all__ = [
    "EDIT_TOOL",
    "LineReplaceInput",
    "Locator",
    "READ_TOOL",
    "SEARCH_TOOL",
    "SearchFilesInput",
    "TOOL_INPUT_MODELS",
    "ViewInput",
    "WEB_SEARCH_TOOL",
    "WRITE_TOOL",
    "WriteInput",
    "tool_definitions",
]

READ_TOOL = "either-view"
WRITE_TOOL = "either-write"
EDIT_TOOL = "either-line-replace"
SEARCH_TOOL = "either-search-files"
WEB_SEARCH_TOOL = "web_search"

DEFAULT_MAX_BYTES = 1_048_576


class _ToolInput(BaseModel):
    # runtime annotations such as the read-before-write warning ride along as extras
    model_config = ConfigDict(extra="ignore")


class ViewInput(_ToolInput):
    path: str = Field(min_length=1, description="Workspace-relative file path.")
    start_line: Optional[int] = Field(default=None, ge=1, description="First line to return (1-based).")
    end_line: Optional[int] = Field(default=None, ge=1, description="Last line to return (inclusive).")
    max_bytes: int = Field(default=DEFAULT_MAX_BYTES, ge=1, description="Truncate output beyond this size.")


class WriteInput(_ToolInput):
    path: str = Field(min_length=1, description="Workspace-relative file path.")
    content: str = Field(description="Full file content.")
    overwrite: bool = Field(default=False, description="Replace the file if it already exists.")


class Locator(_ToolInput):
    start_line: int = Field(ge=1)
    end_line: int = Field(ge=1)
    needle: Optional[str] = Field(
        default=None,
        description="Exact text expected inside the target lines; must be unique in the file.",
    )


class LineReplaceInput(_ToolInput):
    path: str = Field(min_length=1, description="Workspace-relative file path.")
    locator: Locator
    replacement: str = Field(description="Text that replaces the located lines.")
    verify_after: bool = Field(default=True, description="Re-read the file and compare hashes after writing.")


class SearchFilesInput(_ToolInput):
    query: str = Field(min_length=1, description="Literal text or regular expression to find.")
    glob: str = Field(default="src/**/*", description="Files to search.")
    max_results: int = Field(default=100, ge=1, le=1000)
    regex: bool = False
    context_lines: int = Field(default=0, ge=0, le=10)

    @model_validator(mode="after")
    def _strip_glob(self) -> "SearchFilesInput":
        self.glob = self.glob.strip() or "src/**/*"
        return self


TOOL_INPUT_MODELS: Dict[str, Type[_ToolInput]] = {
    READ_TOOL: ViewInput,
    WRITE_TOOL: WriteInput,
    EDIT_TOOL: LineReplaceInput,
    SEARCH_TOOL: SearchFilesInput,
}

_DESCRIPTIONS: Dict[str, str] = {
    READ_TOOL: "Read a file from the workspace. Always read a file before editing it.",
    WRITE_TOOL: (
        "Create a new file. Fails if the file exists unless overwrite is true. "
        "Use either-line-replace for targeted edits to existing files."
    ),
    EDIT_TOOL: (
        "Replace a line range in an existing file. Provide a needle copied exactly from the "
        "current file so the edit lands where intended."
    ),
    SEARCH_TOOL: "Search workspace files for text or a regular expression and return matching lines.",
}


def _input_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    return schema


def tool_definitions() -> List[Dict[str, Any]]:
    """Return the client-side tool definitions in a stable order."""
    return [
        {"name": name, "description": _DESCRIPTIONS[name], "input_schema": _input_schema(model)}
        for name, model in TOOL_INPUT_MODELS.items()
    ]
