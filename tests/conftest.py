from __future__ import annotations

import sys
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ab.memory.store import ExecutionStore  # noqa: E402
from ab.models.client import ModelClient  # noqa: E402
from ab.workspace import Workspace  # noqa: E402


class ScriptedClient(ModelClient):
    """Model client that replays canned response bodies instead of calling the service.

    Once the script runs out the last body is repeated, which lets tests model
    a model that never stops asking for tools.
    """

    def __init__(self, bodies: Sequence[Mapping[str, Any]]) -> None:
        super().__init__("scripted-model", streaming=False, max_attempts=1, retry_delay=0)
        self._bodies = list(bodies)
        self.payloads: List[Dict[str, Any]] = []

    def _complete(self, payload: Dict[str, Any]) -> Mapping[str, Any]:
        self.payloads.append(payload)
        index = min(len(self.payloads), len(self._bodies)) - 1
        return self._bodies[index]


def text_body(text: str) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }


def tool_body(*calls: Mapping[str, Any], text: Optional[str] = None) -> Dict[str, Any]:
    content: List[Dict[str, Any]] = []
    if text:
        content.append({"type": "text", "text": text})
    for position, call in enumerate(calls):
        content.append(
            {
                "type": "tool_use",
                "id": call.get("id", f"toolu_{position}"),
                "name": call["name"],
                "input": dict(call.get("input") or {}),
            }
        )
    return {"content": content, "stop_reason": "tool_use", "usage": {"input_tokens": 10, "output_tokens": 5}}


def plan_payload(*operations: Mapping[str, Any], plan_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "planId": plan_id or str(uuid.uuid4()),
        "sessionId": str(uuid.uuid4()),
        "operations": [dict(operation) for operation in operations],
    }


@pytest.fixture()
def workspace(tmp_path: Path) -> Workspace:
    root = tmp_path / "workspace"
    root.mkdir()
    return Workspace(root)


@pytest.fixture()
def store() -> ExecutionStore:
    with ExecutionStore(":memory:") as execution_store:
        yield execution_store


@pytest.fixture()
def scripted_client() -> Callable[..., ScriptedClient]:
    def _factory(*bodies: Mapping[str, Any]) -> ScriptedClient:
        return ScriptedClient(bodies)

    return _factory


@pytest.fixture()
def bodies() -> Any:
    """Expose the response body builders to test modules."""

    class _Bodies:
        text = staticmethod(text_body)
        tools = staticmethod(tool_body)

    return _Bodies


@pytest.fixture()
def make_plan() -> Callable[..., Dict[str, Any]]:
    return plan_payload
