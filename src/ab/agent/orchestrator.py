"""Multi-turn tool orchestration loop between the model service and the workspace."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..config import MAX_AGENT_TURNS, AppConfig
from ..models.client import ModelClient, WebSearchOptions
from ..models.messages import Message, ModelResponse, ToolResultBlock, ToolUseBlock
from ..models.streaming import DeltaCallback, TextDelta
from ..prompts import render_system_prompt
from ..telemetry import emit_event
from ..tools.definitions import EDIT_TOOL, WRITE_TOOL, tool_definitions
from ..tools.gateway import ToolGateway
from ..tools.verifier import VerifierRunner, VerifyResult
from ..workspace import Workspace, WorkspaceError
from .conversation import ConversationState
from .enforcer import ResolvedTurn, resolve
from .phases import PhaseCallback, PhaseTracker
from .references import MARKUP_EXTENSIONS, MODULE_EXTENSIONS, find_missing_references, format_missing_warning
from .transcript import TranscriptRecorder

__all__ = ["Agent", "AgentResult", "change_summary", "dry_run_result"]

LOGGER = logging.getLogger(__name__)

_MUTATING_TOOLS = frozenset({WRITE_TOOL, EDIT_TOOL})
_SCANNED_EXTENSIONS = MARKUP_EXTENSIONS + MODULE_EXTENSIONS


@dataclass(slots=True)
class AgentResult:
    response: str
    turns: int
    changed_files: List[str] = field(default_factory=list)
    verification: Optional[VerifyResult] = None
    exhausted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "turns": self.turns,
            "changedFiles": list(self.changed_files),
            "verification": self.verification.to_dict() if self.verification else None,
            "exhausted": self.exhausted,
        }


def dry_run_result(tool_use: ToolUseBlock) -> ToolResultBlock:
    rendered = json.dumps(tool_use.input, indent=2, ensure_ascii=False)
    return ToolResultBlock(
        tool_use_id=tool_use.id,
        content=f"[DRY RUN] Would execute: {tool_use.name} with input: {rendered}",
    )


def change_summary(changed: Iterable[str]) -> str:
    files = sorted(set(changed))
    if not files:
        return ""
    if len(files) == 1:
        return f"**Changed:** {files[0]}\n"
    listing = "\n".join(f"  - {path}" for path in files)
    return f"**Changed ({len(files)} files):**\n{listing}\n"


class Agent:
    """Drive the model through tool calls until it stops asking or the turn budget runs out.

    One instance owns one :class:`ConversationState`; concurrent sessions
    need separate agents.
    """

    def __init__(
        self,
        client: ModelClient,
        gateway: ToolGateway,
        *,
        conversation: Optional[ConversationState] = None,
        verifier: Optional[VerifierRunner] = None,
        recorder: Optional[TranscriptRecorder] = None,
        phases: Optional[PhaseTracker] = None,
        max_turns: int = MAX_AGENT_TURNS,
        dry_run: bool = False,
        web_search: Optional[WebSearchOptions] = None,
        system_prompt: Optional[str] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.client = client
        self.gateway = gateway
        self.conversation = conversation or ConversationState()
        self.verifier = verifier
        self.recorder = recorder
        self.phases = phases or PhaseTracker()
        self.max_turns = max_turns
        self.dry_run = dry_run
        self.web_search = web_search
        enabled = web_search is not None and web_search.enabled
        self.system_prompt = system_prompt or render_system_prompt(web_search=enabled)
        self._on_delta = on_delta

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        client: ModelClient,
        *,
        workspace: Optional[Workspace] = None,
        on_event: Optional[PhaseCallback] = None,
        on_delta: Optional[DeltaCallback] = None,
        dry_run: Optional[bool] = None,
        max_turns: Optional[int] = None,
    ) -> "Agent":
        gateway = ToolGateway.from_config(config, workspace)
        verifier = None
        if config.verifier.enabled:
            verifier = VerifierRunner(
                gateway.workspace.root,
                timeout_seconds=config.verifier.timeout_seconds,
                output_limit=config.verifier.output_limit,
            )
        search = config.tools.web_search
        return cls(
            client,
            gateway,
            verifier=verifier,
            recorder=TranscriptRecorder(config.transcript_dir, enabled=config.logging.capture_transcripts),
            phases=PhaseTracker(
                on_event,
                chunk_size=config.agent.reasoning_chunk_size,
                delay_ms=config.agent.reasoning_delay_ms,
            ),
            max_turns=max_turns or config.agent.max_turns,
            dry_run=config.agent.dry_run if dry_run is None else dry_run,
            web_search=WebSearchOptions(
                enabled=search.enabled,
                max_uses=search.max_uses,
                allowed_domains=list(search.allowed_domains),
                blocked_domains=list(search.blocked_domains),
            ),
            on_delta=on_delta,
        )

    def process_request(self, text: str) -> AgentResult:
        """Run one user request through the turn loop."""
        transcript_id = self.recorder.start(text) if self.recorder else None
        self.conversation.append_user_text(text)
        self._record("user", text)
        self.phases.begin_request()

        changed: List[str] = []
        tools_ran = False
        response_text = ""
        verification: Optional[VerifyResult] = None
        completed = False
        turns = 0

        while turns < self.max_turns:
            turns += 1
            self.conversation.validate()
            self.phases.begin_turn()
            response = self.client.send_message(
                self.conversation.messages,
                self.system_prompt,
                tool_definitions(),
                on_delta=self._handle_delta,
                web_search=self.web_search,
            )
            self._record_response(response)
            if response.text and not self.phases.buffered_text:
                # non-streaming clients deliver no deltas
                self.phases.observe_text(response.text)
            if response.text:
                response_text = response.text

            resolved = resolve(response.content, self.conversation.seen_reads)
            if resolved.injected:
                LOGGER.info(
                    "Injected %d read(s) before edits: %s",
                    len(resolved.injected),
                    ", ".join(str(block.input.get("path")) for block in resolved.injected),
                )
            self.conversation.record_reads(resolved.seen_reads)
            self.conversation.append_assistant(resolved.blocks)

            if not resolved.tool_uses:
                self.phases.finish(tools_ran)
                if tools_ran and not self.dry_run:
                    verification, summary = self._summarise(changed)
                    response_text += summary
                completed = True
                break

            self.phases.tools_requested()
            results = self._execute(resolved, changed)
            if not self.dry_run:
                tools_ran = True
            self._record("user", [result.to_dict() for result in results])
            self.conversation.append_tool_results(results)

        if not completed:
            LOGGER.warning("Agent stopped after reaching the turn budget of %d", self.max_turns)
            emit_event("agent.turn_budget_exhausted", turns=turns, max_turns=self.max_turns)

        if self.recorder and transcript_id:
            self.recorder.end(transcript_id, response_text)
        return AgentResult(
            response=response_text,
            turns=turns,
            changed_files=sorted(set(changed)),
            verification=verification,
            exhausted=not completed,
        )

    def _execute(self, resolved: ResolvedTurn, changed: List[str]) -> List[ToolResultBlock]:
        tool_uses = list(resolved.tool_uses)
        if self.dry_run:
            return [dry_run_result(tool_use) for tool_use in tool_uses]

        results = self.gateway.execute_tools(tool_uses)
        written: Dict[str, str] = {}
        for tool_use, result in zip(tool_uses, results):
            path = result.path
            if result.is_error or path is None or tool_use.name not in _MUTATING_TOOLS:
                continue
            changed.append(path)
            if path.lower().endswith(_SCANNED_EXTENSIONS):
                content = self._written_content(tool_use, path)
                if content is not None:
                    written[path] = content

        if written and results:
            missing = find_missing_references(written, changed, self.gateway.workspace.exists)
            if missing:
                warning = format_missing_warning(missing)
                LOGGER.warning("Missing file references detected: %d", len(missing))
                results[-1].content = (results[-1].content or "") + warning
        return results

    def _written_content(self, tool_use: ToolUseBlock, path: str) -> Optional[str]:
        content = tool_use.input.get("content")
        if tool_use.name == WRITE_TOOL and isinstance(content, str):
            return content
        try:
            return self.gateway.workspace.read_text(path)
        except (WorkspaceError, UnicodeDecodeError) as error:
            LOGGER.debug("Skipping reference scan for %s: %s", path, error)
            return None

    def _summarise(self, changed: Sequence[str]) -> tuple[Optional[VerifyResult], str]:
        verification = self.verifier.run() if self.verifier else None
        verify_summary = VerifierRunner.format_summary(verification) if verification else ""
        metrics = self.gateway.metrics.summary_string()
        summary = f"\n\n---\n{change_summary(changed)}{verify_summary}\n\n**Metrics:**\n{metrics}"
        return verification, summary

    def _handle_delta(self, delta: Any) -> None:
        if isinstance(delta, TextDelta):
            self.phases.observe_text(delta.text)
        if self._on_delta is not None:
            self._on_delta(delta)

    def _record(self, role: str, content: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        if self.recorder:
            self.recorder.add_entry(role, content, metadata)

    def _record_response(self, response: ModelResponse) -> None:
        self._record(
            "assistant",
            [block.to_dict() for block in response.content],
            {
                "model": self.client.model,
                "tokenUsage": {"input": response.usage.input_tokens, "output": response.usage.output_tokens},
                "stopReason": response.stop_reason,
            },
        )

    def load_conversation_history(self, messages: Iterable[Message | Mapping[str, Any]]) -> None:
        self.conversation.load(messages)

    def history(self) -> List[Message]:
        return self.conversation.snapshot()

    def reset(self) -> None:
        self.conversation.reset()
        self.gateway.clear_cache()
        self.gateway.metrics.reset()

    def save_transcript(self) -> Optional[Path]:
        if self.recorder is None:
            return None
        return self.recorder.save()
