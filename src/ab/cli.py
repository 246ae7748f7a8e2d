"""CLI commands for driving the app builder agent and the plan pipeline."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

from .agent import Agent, AgentPhase, ConversationIntegrityError, PhaseEvent
from .config import (
    DEFAULT_CONFIG_NAME,
    AppConfig,
    ConfigError,
    default_config_template,
    load_config,
    write_config,
)
from .memory.store import ExecutionStore
from .models import AnthropicClient, ModelClient, ModelClientError
from .planning.executor import ExecutionResult, PlanExecutor
from .planning.validator import PlanValidator
from .telemetry import configure_logging
from .tools.verifier import VerifierRunner
from .workspace import single_workspace

APP_HELP = "App builder CLI: run the agent, validate and apply plans, verify the workspace."
DEFAULT_WORKSPACE_ID = "default"

app = typer.Typer(help=APP_HELP)

_CONFIG_OPTION_HELP = "Path to the app builder configuration file."


def _load(config_path: Path) -> AppConfig:
    try:
        config = load_config(config_path)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    configure_logging(config.logging.level, config.logging.log_file)
    return config


def _read_plan_file(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        typer.echo(f"Failed to read plan file {path}: {error}")
        raise typer.Exit(code=1) from error
    except json.JSONDecodeError as error:
        typer.echo(f"Plan file {path} is not valid JSON: {error}")
        raise typer.Exit(code=1) from error


def _build_client(config: AppConfig) -> ModelClient:
    settings = config.model
    if settings.provider != "anthropic":
        typer.echo(f"Unsupported model provider: {settings.provider}")
        raise typer.Exit(code=1)
    try:
        return AnthropicClient(
            api_key=settings.resolved_api_key(),
            base_url=settings.base_url,
            model=settings.name,
            timeout=settings.timeout,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            top_p=settings.top_p,
            streaming=settings.streaming,
            max_attempts=settings.max_attempts,
            retry_delay=settings.retry_delay,
        )
    except ValueError as error:
        typer.echo(f"Failed to initialise model client: {error}")
        raise typer.Exit(code=1) from error


def _echo_phase(event: PhaseEvent) -> None:
    if event.text is None:
        if event.phase in (AgentPhase.REASONING, AgentPhase.BUILDING):
            typer.echo(f"\n[{event.phase.value}]")
        return
    typer.echo(event.text, nl=False)


def _render_execution(result: ExecutionResult) -> None:
    typer.echo(f"Plan {result.plan_id} [{result.status}]")
    typer.echo(
        f"Operations: total {result.total_ops} | succeeded {result.succeeded_ops} | "
        f"failed {result.failed_ops} | skipped {result.skipped_ops}"
    )
    for operation in result.operations:
        typer.echo(f"- #{operation.index} {operation.type}: {operation.status}")
        if operation.error:
            typer.echo(f"    ! {operation.error}")
    if result.log_path:
        typer.echo(f"Audit log: {result.log_path}")
    typer.echo(f"Duration: {result.duration_ms}ms")


@app.command()
def init(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration and create the workspace directories."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    template = default_config_template()
    write_config(config_path, template)
    loaded = AppConfig.from_mapping(template, base_dir=config_path.resolve().parent)
    loaded.workspace_root.mkdir(parents=True, exist_ok=True)
    loaded.data_root.mkdir(parents=True, exist_ok=True)
    typer.echo(f"Wrote configuration to {config_path}")
    typer.echo(f"Workspace: {loaded.workspace_root}")


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Request for the agent."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
    dry_run: bool = typer.Option(False, "--dry-run", help="Describe tool calls instead of executing them."),
    max_turns: Optional[int] = typer.Option(None, "--max-turns", min=1, help="Override the turn budget."),
) -> None:
    """Run a single agent request against the configured workspace."""
    app_config = _load(Path(config))
    client = _build_client(app_config)
    agent = Agent.from_config(
        app_config,
        client,
        on_event=_echo_phase,
        dry_run=dry_run or None,
        max_turns=max_turns,
    )
    try:
        result = agent.process_request(prompt)
    except ConversationIntegrityError as error:
        typer.echo(f"Conversation integrity error: {error}")
        raise typer.Exit(code=1) from error
    except ModelClientError as error:
        typer.echo(f"Model request failed: {error}")
        raise typer.Exit(code=1) from error
    finally:
        agent.save_transcript()

    typer.echo("")
    typer.echo(result.response)
    if result.exhausted:
        typer.echo(f"Stopped after {result.turns} turn(s): turn budget exhausted.")


@app.command("validate-plan")
def validate_plan(
    plan_file: Path = typer.Argument(..., help="JSON plan document."),
) -> None:
    """Validate a plan without applying it."""
    outcome = PlanValidator().validate(_read_plan_file(plan_file))
    if outcome.success:
        typer.echo("Plan is valid")
        return
    typer.echo(f"Plan rejected ({len(outcome.errors)} error(s)):")
    for entry in outcome.errors:
        typer.echo(f"- {entry}")
    raise typer.Exit(code=1)


@app.command("apply-plan")
def apply_plan(
    plan_file: Path = typer.Argument(..., help="JSON plan document."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
    workspace_id: str = typer.Option(DEFAULT_WORKSPACE_ID, "--workspace-id", help="Workspace identifier."),
) -> None:
    """Validate and execute a plan against the configured workspace."""
    app_config = _load(Path(config))
    outcome = PlanValidator().validate(_read_plan_file(plan_file))
    if not outcome.success or outcome.plan is None:
        typer.echo(f"Plan rejected ({len(outcome.errors)} error(s)):")
        for entry in outcome.errors:
            typer.echo(f"- {entry}")
        raise typer.Exit(code=1)

    with ExecutionStore(app_config.db_path) as store:
        executor = PlanExecutor(store, single_workspace(app_config.workspace_root))
        result = executor.execute(outcome.plan, workspace_id)
    _render_execution(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def status(
    plan_id: Optional[str] = typer.Argument(None, help="Show a single plan execution."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
    limit: int = typer.Option(20, "--limit", min=1, help="Number of recent executions to list."),
) -> None:
    """Report stored plan executions."""
    app_config = _load(Path(config))
    with ExecutionStore(app_config.db_path) as store:
        if plan_id:
            executor = PlanExecutor(store, single_workspace(app_config.workspace_root))
            try:
                result = executor.load_result(plan_id)
            except KeyError as error:
                typer.echo(f"No execution recorded for plan {plan_id}.")
                raise typer.Exit(code=1) from error
            _render_execution(result)
            return
        executions = store.list_executions(limit=limit)

    if not executions:
        typer.echo("No plan executions recorded.")
        return
    typer.echo("Recent plan executions:")
    for execution in executions:
        typer.echo(
            f"- {execution.plan_id} [{execution.status.value}] "
            f"{execution.succeeded_ops}/{execution.total_ops} succeeded"
        )


@app.command()
def verify(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
) -> None:
    """Run the verification steps for the configured workspace."""
    app_config = _load(Path(config))
    runner = VerifierRunner(
        app_config.workspace_root,
        timeout_seconds=app_config.verifier.timeout_seconds,
        output_limit=app_config.verifier.output_limit,
    )
    result = runner.run()
    typer.echo(VerifierRunner.format_summary(result).lstrip("\n"))
    if not result.passed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
