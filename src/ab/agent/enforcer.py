"""Read-before-write enforcement for model-issued edit calls.

:func:`resolve` rewrites one assistant turn so that every line-replace edit
is preceded by a read of the same path. Reads seen in earlier turns count.
File creation is exempt because the write tool refuses to clobber existing
files on its own.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from ..models.messages import ContentBlock, ToolUseBlock
from ..tools.definitions import EDIT_TOOL, READ_TOOL

__all__ = ["ENFORCER_WARNING", "ResolvedTurn", "injected_read_id", "resolve"]

ENFORCER_WARNING = "No `needle` provided; injected a read to reduce risk."


@dataclass(frozen=True, slots=True)
class ResolvedTurn:
    """Executable view of an assistant turn after enforcement."""

    blocks: Tuple[ContentBlock, ...]
    tool_uses: Tuple[ToolUseBlock, ...]
    injected: Tuple[ToolUseBlock, ...]
    seen_reads: FrozenSet[str]


def injected_read_id() -> str:
    return f"enforcer-view-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _target_path(block: ToolUseBlock) -> Optional[str]:
    path = block.input.get("path")
    return path if isinstance(path, str) and path else None


def _has_needle(block: ToolUseBlock) -> bool:
    locator = block.input.get("locator")
    if isinstance(locator, dict) and locator.get("needle"):
        return True
    return bool(block.input.get("needle"))


def resolve(
    raw_blocks: Sequence[ContentBlock],
    seen_reads: Iterable[str] = (),
    *,
    id_factory: Callable[[], str] = injected_read_id,
) -> ResolvedTurn:
    """Return the enforced block sequence and the tool calls to execute, in order.

    ``raw_blocks`` is never mutated; annotated edits are copies.
    """
    seen = set(seen_reads)
    blocks: List[ContentBlock] = []
    tool_uses: List[ToolUseBlock] = []
    injected: List[ToolUseBlock] = []

    for block in raw_blocks:
        if not isinstance(block, ToolUseBlock):
            blocks.append(block)
            continue

        path = _target_path(block)
        if block.name == READ_TOOL and path:
            seen.add(path)
        elif block.name == EDIT_TOOL:
            if path and path not in seen:
                read = ToolUseBlock(id=id_factory(), name=READ_TOOL, input={"path": path})
                blocks.append(read)
                tool_uses.append(read)
                injected.append(read)
                seen.add(path)
            if not _has_needle(block):
                block = ToolUseBlock(
                    id=block.id,
                    name=block.name,
                    input={**block.input, "_enforcer_warning": ENFORCER_WARNING},
                )

        blocks.append(block)
        tool_uses.append(block)

    return ResolvedTurn(
        blocks=tuple(blocks),
        tool_uses=tuple(tool_uses),
        injected=tuple(injected),
        seen_reads=frozenset(seen),
    )
