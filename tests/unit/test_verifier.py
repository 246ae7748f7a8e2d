from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from ab.tools.verifier import StepResult, VerifierRunner, VerifyResult

FAKE_NPM = """#!/bin/sh
case "$2" in
  typecheck) echo "src/App.tsx(3,1): error TS2304"; exit ${TYPECHECK_EXIT:-0} ;;
  lint) echo "lint failed"; exit 1 ;;
  slow) exec sleep 5 ;;
  noisy) echo "abcdefghijklmnop" ;;
  *) echo "$2 ok CI=$CI NODE_ENV=$NODE_ENV" ;;
esac
"""

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake npm is a POSIX shell script")


@pytest.fixture()
def fake_npm(tmp_path: Path) -> str:
    script = tmp_path / "bin" / "npm"
    script.parent.mkdir()
    script.write_text(FAKE_NPM, encoding="utf-8")
    script.chmod(0o755)
    return str(script)


def _manifest(root: Path, *scripts: str) -> None:
    root.mkdir(parents=True, exist_ok=True)
    (root / "package.json").write_text(
        json.dumps({"name": "demo", "scripts": {name: f"run {name}" for name in scripts}}), encoding="utf-8"
    )


def test_static_check_without_index(tmp_path: Path) -> None:
    result = VerifierRunner(tmp_path).run()

    assert result.passed
    assert [(step.name, step.output) for step in result.steps] == [
        ("Static Validation", "No index.html found - skipping validation")
    ]


def test_static_check_flags_malformed_index(tmp_path: Path) -> None:
    (tmp_path / "index.html").write_text("<html><body>hi</body>", encoding="utf-8")

    result = VerifierRunner(tmp_path).run()

    assert not result.passed
    summary = VerifierRunner.format_summary(result)
    assert "✗ Static Validation" in summary
    assert "index.html may be malformed (missing doctype or closing tag)" in summary


def test_static_check_accepts_well_formed_index(tmp_path: Path) -> None:
    (tmp_path / "index.html").write_text("<!DOCTYPE html>\n<html><body></body></html>\n", encoding="utf-8")

    result = VerifierRunner(tmp_path).run()

    assert result.passed
    assert result.steps[0].output == "index.html appears well-formed"


def test_manifest_without_scripts_has_no_steps(tmp_path: Path) -> None:
    _manifest(tmp_path)

    result = VerifierRunner(tmp_path).run()

    assert result.steps == []
    assert result.passed
    assert VerifierRunner.format_summary(result) == "✓ No verification steps configured"


def test_missing_executable_fails_the_step(tmp_path: Path) -> None:
    _manifest(tmp_path, "lint")

    result = VerifierRunner(tmp_path, npm_executable="ab-missing-npm-binary").run()

    assert not result.passed
    assert result.steps[0].name == "Lint"
    assert result.steps[0].output == "Failed to execute command: executable not available: ab-missing-npm-binary"


@posix_only
def test_scripts_run_in_order_with_ci_environment(tmp_path: Path, fake_npm: str) -> None:
    root = tmp_path / "app"
    _manifest(root, "build", "test", "lint", "typecheck")

    result = VerifierRunner(root, npm_executable=fake_npm).run()

    assert [step.name for step in result.steps] == ["Type Check", "Lint", "Test", "Build"]
    assert [step.ok for step in result.steps] == [True, False, True, True]
    assert result.steps[2].output == "test ok CI=true NODE_ENV=test"


@posix_only
def test_failed_typecheck_stops_the_run(tmp_path: Path, fake_npm: str, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "app"
    _manifest(root, "typecheck", "test", "build")
    monkeypatch.setenv("TYPECHECK_EXIT", "2")

    result = VerifierRunner(root, npm_executable=fake_npm).run()

    assert [step.name for step in result.steps] == ["Type Check"]
    assert not result.passed
    assert "error TS2304" in VerifierRunner.format_summary(result)


@posix_only
def test_output_is_truncated(tmp_path: Path, fake_npm: str) -> None:
    root = tmp_path / "app"
    root.mkdir()
    runner = VerifierRunner(root, npm_executable=fake_npm, output_limit=5)

    ok, output = runner._run_command([fake_npm, "run", "noisy"])

    assert ok
    assert output == "abcde\n... (output truncated)"


@posix_only
def test_slow_command_times_out(tmp_path: Path, fake_npm: str) -> None:
    root = tmp_path / "app"
    root.mkdir()
    runner = VerifierRunner(root, npm_executable=fake_npm, timeout_seconds=0.2)

    ok, output = runner._run_command([fake_npm, "run", "slow"])

    assert not ok
    assert output == "Command timed out after 0.2 seconds"


def test_format_summary_shows_failures_and_timing() -> None:
    result = VerifyResult(
        steps=[
            StepResult(name="Type Check", ok=True, output="", duration_ms=0),
            StepResult(name="Lint", ok=False, output="line1\n\nline2", duration_ms=12),
        ]
    )

    assert VerifierRunner.format_summary(result) == (
        "\n**Verification Results:**\n  ✓ Type Check\n  ✗ Lint (12ms)\n    line1\n    line2"
    )
