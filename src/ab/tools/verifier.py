"""Post-change verification of the workspace project.

Node projects run their ``typecheck``, ``lint``, ``test`` and ``build`` npm
scripts in that order, skipping scripts the manifest does not declare. A
failing type check or test stops the run. Projects without a ``package.json``
get a static sanity check of ``index.html`` instead.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

__all__ = ["StepResult", "VerifierRunner", "VerifyResult"]

LOGGER = logging.getLogger(__name__)

STATIC_STEP = "Static Validation"
SCRIPT_CHECKS: Tuple[Tuple[str, str], ...] = (
    ("typecheck", "Type Check"),
    ("lint", "Lint"),
    ("test", "Test"),
    ("build", "Build"),
)
CRITICAL_SCRIPTS = frozenset({"typecheck", "test"})


@dataclass(slots=True)
class StepResult:
    name: str
    ok: bool
    output: str = ""
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "ok": self.ok, "output": self.output, "durationMs": self.duration_ms}


@dataclass(slots=True)
class VerifyResult:
    steps: List[StepResult] = field(default_factory=list)
    total_duration_ms: int = 0

    @property
    def passed(self) -> bool:
        return all(step.ok for step in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "passed": self.passed,
            "totalDurationMs": self.total_duration_ms,
        }


class VerifierRunner:
    """Run the verification steps that apply to ``workspace_root``."""

    def __init__(
        self,
        workspace_root: Path | str,
        *,
        timeout_seconds: float = 60.0,
        output_limit: int = 5000,
        npm_executable: str = "npm",
    ) -> None:
        self.workspace_root = Path(workspace_root)
        self.timeout_seconds = timeout_seconds
        self.output_limit = output_limit
        self.npm_executable = npm_executable

    def run(self) -> VerifyResult:
        started = time.perf_counter()
        manifest = self._load_manifest()
        steps: List[StepResult] = []
        if manifest is None:
            steps.append(self._static_check())
        else:
            scripts = manifest.get("scripts") or {}
            for script, label in SCRIPT_CHECKS:
                if not isinstance(scripts, dict) or not scripts.get(script):
                    continue
                step_started = time.perf_counter()
                ok, output = self._run_command([self.npm_executable, "run", script])
                steps.append(
                    StepResult(
                        name=label,
                        ok=ok,
                        output=output,
                        duration_ms=int(round((time.perf_counter() - step_started) * 1000)),
                    )
                )
                if not ok and script in CRITICAL_SCRIPTS:
                    LOGGER.info("Critical verification step %s failed; stopping", label)
                    break
        result = VerifyResult(steps=steps, total_duration_ms=int(round((time.perf_counter() - started) * 1000)))
        LOGGER.info("Verification %s (%d step(s))", "passed" if result.passed else "failed", len(steps))
        return result

    def _load_manifest(self) -> Optional[Dict[str, Any]]:
        path = self.workspace_root / "package.json"
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def _static_check(self) -> StepResult:
        index = self.workspace_root / "index.html"
        try:
            content = index.read_text(encoding="utf-8")
        except OSError:
            return StepResult(name=STATIC_STEP, ok=True, output="No index.html found - skipping validation")
        has_doctype = content.strip().lower().startswith("<!doctype html")
        if has_doctype and "</html>" in content:
            return StepResult(name=STATIC_STEP, ok=True, output="index.html appears well-formed")
        return StepResult(
            name=STATIC_STEP,
            ok=False,
            output="index.html may be malformed (missing doctype or closing tag)",
        )

    def _run_command(self, command: List[str]) -> Tuple[bool, str]:
        if shutil.which(command[0]) is None:
            return False, f"Failed to execute command: executable not available: {command[0]}"
        env = dict(os.environ)
        env.update({"CI": "true", "NODE_ENV": "test"})
        try:
            process = subprocess.run(  # noqa: S603  # command is built from fixed npm script names
                command,
                cwd=self.workspace_root,
                env=env,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            return False, f"Command timed out after {self.timeout_seconds:g} seconds"
        except OSError as error:
            return False, f"Failed to execute command: {error}"
        output = (process.stdout or "") + (process.stderr or "")
        if len(output) >= self.output_limit:
            output = output[: self.output_limit] + "\n... (output truncated)"
        return process.returncode == 0, output.strip()

    @staticmethod
    def format_summary(result: VerifyResult) -> str:
        """Render ``result`` as the short block appended to agent replies."""
        if not result.steps:
            return "✓ No verification steps configured"
        lines = ["\n**Verification Results:**"]
        for step in result.steps:
            icon = "✓" if step.ok else "✗"
            timing = f" ({step.duration_ms}ms)" if step.duration_ms else ""
            lines.append(f"  {icon} {step.name}{timing}")
            if not step.ok and step.output:
                for line in step.output.split("\n")[:5]:
                    if line.strip():
                        lines.append(f"    {line.strip()}")
        return "\n".join(lines)
