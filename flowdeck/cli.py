"""Command line interface for managing flowdeck workflows and executions."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Coroutine, Dict, Optional, TypeVar

import typer
import yaml
from pydantic import ValidationError

from .config import FlowdeckConfig, load_config
from .engine import WorkflowEngine
from .errors import FlowdeckError
from .handlers.registry import HandlerRegistry
from .models import InteractionType, Workflow, WorkflowExecution
from .persistence import get_store

T = TypeVar("T")

app = typer.Typer(help="CLI for flowdeck workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow definitions")
execution_app = typer.Typer(help="Commands for inspecting and steering executions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, help="Path to a flowdeck YAML config file"),
    database_url: Optional[str] = typer.Option(
        None, help="Store URL (sqlite://path or postgresql://...); overrides the config"
    ),
    log_level: str = typer.Option("WARNING", help="Logging level"),
) -> None:
    """flowdeck CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    settings = load_config(str(config) if config else None)
    if database_url:
        settings.database_url = database_url
    ctx.obj = settings


def _engine(ctx: typer.Context) -> WorkflowEngine:
    settings: FlowdeckConfig = ctx.obj or load_config()
    return WorkflowEngine(
        get_store(config=settings), HandlerRegistry.default(settings), settings=settings
    )


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except (FlowdeckError, ValueError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _parse_json(value: Optional[str], option: str) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"invalid JSON: {e.msg}", param_hint=option)
    if not isinstance(data, dict):
        raise typer.BadParameter("expected a JSON object", param_hint=option)
    return data


def _echo_execution(execution: WorkflowExecution) -> None:
    typer.echo(f"Execution {execution.id}: {execution.status.value}")
    if execution.error:
        typer.echo(f"Error: {execution.error}")
    for step in execution.ordered_steps():
        line = f"- {step.id}: {step.status.value}"
        if step.attempts > 1:
            line += f" (attempts: {step.attempts})"
        if step.error:
            line += f" [{step.error}]"
        typer.echo(line)


# ----------------------------------------------------------------------
# Workflows
@workflow_app.command("list")
def workflow_list(ctx: typer.Context) -> None:
    """List stored workflow definitions."""
    workflows = _run(_engine(ctx).list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name}\t{wf.status.value}\t{len(wf.steps)} steps")


@workflow_app.command("show")
def workflow_show(ctx: typer.Context, workflow_id: str) -> None:
    """
    Show a workflow definition and its steps.

    Example:
        flowdeck workflow show 3f2c...
        # Output: Workflow 3f2c...: Research digest (draft)
        #         - fetch [api_call]
        #         - summarize [ai_action] <- fetch
    """
    wf = _run(_engine(ctx).get_workflow(workflow_id))
    typer.echo(f"Workflow {wf.id}: {wf.name} ({wf.status.value})")
    if wf.description:
        typer.echo(wf.description)
    for step in wf.steps:
        deps = f" <- {', '.join(step.dependencies)}" if step.dependencies else ""
        approval = " (approval required)" if step.user_approval_required else ""
        typer.echo(f"- {step.id} [{step.type.value}]{deps}{approval}")


@workflow_app.command("import")
def workflow_import(ctx: typer.Context, path: Path) -> None:
    """
    Import a workflow definition from a YAML or JSON file.

    The file holds one workflow: ``name``, optional ``id`` and
    ``description``, and a ``steps`` list.
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        workflow = Workflow.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        typer.secho(f"Invalid workflow file {path}: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    workflow = _run(_engine(ctx).create_workflow(workflow))
    typer.echo(f"Imported workflow {workflow.id} ({workflow.name})")


@workflow_app.command("delete")
def workflow_delete(ctx: typer.Context, workflow_id: str) -> None:
    """Delete a workflow and its finished executions."""
    _run(_engine(ctx).delete_workflow(workflow_id))
    typer.echo(f"Deleted workflow {workflow_id}")


@workflow_app.command("run")
def workflow_run(
    ctx: typer.Context,
    workflow_id: str,
    inputs: Optional[str] = typer.Option(None, help="Initial inputs as a JSON object"),
) -> None:
    """
    Run a workflow until it completes, fails or pauses for user interaction.

    Example:
        flowdeck workflow run 3f2c... --inputs '{"topic": "llm agents"}'
    """
    initial_inputs = _parse_json(inputs, "--inputs")
    execution = _run(_engine(ctx).invoke_workflow(workflow_id, initial_inputs))
    _echo_execution(execution)


# ----------------------------------------------------------------------
# Executions
@execution_app.command("list")
def execution_list(
    ctx: typer.Context,
    workflow: Optional[str] = typer.Option(None, help="Only executions of this workflow"),
) -> None:
    """List executions with their status."""
    executions = _run(_engine(ctx).list_executions(workflow))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(f"{execution.id}\t{execution.workflow_id}\t{execution.status.value}")


@execution_app.command("show")
def execution_show(ctx: typer.Context, execution_id: str) -> None:
    """Show execution status, per-step state and recorded interactions."""
    execution = _run(_engine(ctx).get_execution(execution_id))
    _echo_execution(execution)
    for interaction in execution.user_interactions:
        message = f": {interaction.user_message}" if interaction.user_message else ""
        typer.echo(
            f"  {interaction.timestamp.isoformat()} {interaction.type.value} "
            f"{interaction.step_id}{message}"
        )


def _interact(
    ctx: typer.Context,
    execution_id: str,
    step_id: str,
    kind: InteractionType,
    data: Optional[str] = None,
    message: Optional[str] = None,
) -> None:
    payload = _parse_json(data, "--data")
    execution = _run(
        _engine(ctx).submit_user_interaction(
            execution_id, step_id, kind, data=payload, user_message=message
        )
    )
    _echo_execution(execution)


@execution_app.command("approve")
def execution_approve(
    ctx: typer.Context,
    execution_id: str,
    step_id: str,
    data: Optional[str] = typer.Option(None, help="Step inputs as a JSON object"),
    message: Optional[str] = typer.Option(None, help="Note stored with the interaction"),
) -> None:
    """Approve a paused step, optionally supplying its inputs, and continue."""
    kind = InteractionType.INPUT if data else InteractionType.APPROVAL
    _interact(ctx, execution_id, step_id, kind, data, message)


@execution_app.command("skip")
def execution_skip(
    ctx: typer.Context,
    execution_id: str,
    step_id: str,
    message: Optional[str] = typer.Option(None, help="Note stored with the interaction"),
) -> None:
    """Skip a step; its dependents become eligible."""
    _interact(ctx, execution_id, step_id, InteractionType.SKIP, message=message)


@execution_app.command("retry")
def execution_retry(ctx: typer.Context, execution_id: str, step_id: str) -> None:
    """Requeue a failed or paused step with a fresh retry budget."""
    _interact(ctx, execution_id, step_id, InteractionType.RETRY)


@execution_app.command("reject")
def execution_reject(
    ctx: typer.Context,
    execution_id: str,
    step_id: str,
    message: Optional[str] = typer.Option(None, help="Reason for the rejection"),
) -> None:
    """Reject a paused step, failing it."""
    _interact(ctx, execution_id, step_id, InteractionType.REJECTION, message=message)


@execution_app.command("cancel")
def execution_cancel(ctx: typer.Context, execution_id: str) -> None:
    """Cancel a running or paused execution."""
    execution = _run(_engine(ctx).cancel_execution(execution_id))
    typer.echo(f"Execution {execution.id}: {execution.status.value}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
