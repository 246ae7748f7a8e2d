"""Tool execution gateway used by the agent orchestrator."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from ..config import AppConfig
from ..models.messages import ToolResultBlock, ToolUseBlock
from ..telemetry import emit_event
from ..workspace import Workspace
from .executors import ToolContext, ToolExecutor, ToolOutput, default_executors
from .metrics import MetricsCollector, ToolMetric
from .security import SecurityGuard

__all__ = ["ToolGateway"]

LOGGER = logging.getLogger(__name__)


class ToolGateway:
    """Map tool names to executors and run requested calls one at a time.

    Every call yields exactly one :class:`ToolResultBlock`; failures never
    raise out of :meth:`execute_tools`.
    """

    def __init__(
        self,
        context: ToolContext,
        executors: Optional[Iterable[ToolExecutor]] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._context = context
        self._executors: Dict[str, ToolExecutor] = {}
        for executor in executors if executors is not None else default_executors():
            if executor.name in self._executors:
                raise ValueError(f"Duplicate executor registered for tool '{executor.name}'")
            self._executors[executor.name] = executor
        self._cache: Dict[str, ToolOutput] = {}
        self.metrics = metrics or MetricsCollector()

    @classmethod
    def from_config(cls, config: AppConfig, workspace: Optional[Workspace] = None) -> "ToolGateway":
        guard = SecurityGuard(
            config.security.allowed_workspaces,
            config.security.denied_paths,
            config.security.secret_patterns if config.security.redact_secrets else (),
        )
        context = ToolContext(
            workspace=workspace or Workspace(config.workspace_root),
            guard=guard,
            max_payload_size=config.limits.max_tool_payload_size,
            max_file_size=config.security.max_file_size,
            max_search_results=config.limits.max_search_results,
        )
        return cls(context)

    @property
    def workspace(self) -> Workspace:
        return self._context.workspace

    @property
    def tool_names(self) -> List[str]:
        return list(self._executors)

    def clear_cache(self) -> None:
        self._cache.clear()

    def execute_tools(self, tool_uses: Sequence[ToolUseBlock]) -> List[ToolResultBlock]:
        """Execute ``tool_uses`` sequentially, returning results in request order."""
        return [self.execute_tool(tool_use) for tool_use in tool_uses]

    def execute_tool(self, tool_use: ToolUseBlock) -> ToolResultBlock:
        executor = self._executors.get(tool_use.name)
        if executor is None:
            return ToolResultBlock(
                tool_use_id=tool_use.id,
                content=f"Error: Unknown tool '{tool_use.name}'",
                is_error=True,
            )

        try:
            params = executor.input_model.model_validate(tool_use.input)
        except ValidationError as error:
            problems = ", ".join(
                f"{'.'.join(str(part) for part in item['loc']) or 'input'}: {item['msg']}" for item in error.errors()
            )
            return ToolResultBlock(
                tool_use_id=tool_use.id,
                content=f"Validation error: {problems}",
                is_error=True,
            )

        cache_key = _cache_key(tool_use.name, tool_use.input)
        if not executor.mutates and cache_key in self._cache:
            cached = self._cache[cache_key]
            return _to_result(tool_use.id, cached)

        started = time.perf_counter()
        try:
            output = executor.execute(params, self._context)
        except Exception as error:  # noqa: BLE001 - executor failures become error results
            LOGGER.exception("Tool %s raised during execution", tool_use.name)
            output = ToolOutput.error(f"Execution error: {error}")
        latency_ms = int(round((time.perf_counter() - started) * 1000))

        self.metrics.record(
            ToolMetric(
                tool=tool_use.name,
                latency_ms=latency_ms,
                input_size=len(json.dumps(tool_use.input, default=str)),
                output_size=len(output.content),
                success=not output.is_error,
                error=output.content if output.is_error else None,
                file_count=output.metadata.get("match_count"),
            )
        )
        emit_event(
            "tool.executed",
            tool=tool_use.name,
            tool_use_id=tool_use.id,
            success=not output.is_error,
            latency_ms=latency_ms,
            path=output.metadata.get("path"),
        )

        if executor.mutates:
            if not output.is_error:
                # reads cached before this write are stale now
                self._cache.clear()
        elif not output.is_error:
            self._cache[cache_key] = output
        return _to_result(tool_use.id, output)


def _cache_key(name: str, params: Any) -> str:
    encoded = json.dumps({"name": name, "input": params}, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _to_result(tool_use_id: str, output: ToolOutput) -> ToolResultBlock:
    return ToolResultBlock(
        tool_use_id=tool_use_id,
        content=output.content,
        is_error=output.is_error,
        metadata=dict(output.metadata) if output.metadata else None,
    )
