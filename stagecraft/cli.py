"""Command line interface for stagecraft workflows and agent sessions."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer

from stagecraft import get_repository, load_config
from stagecraft.config import StagecraftConfig
from stagecraft.constants import STATE_DIR
from stagecraft.exceptions import StagecraftError, WorkflowNotFoundError
from stagecraft.governance import GovernanceGate
from stagecraft.runtime.loop import AgentSessionConfig, LoopDependencies, run_agent_session
from stagecraft.runtime.providers import get_provider
from stagecraft.runtime.session import Session, list_session_ids
from stagecraft.runtime.tools import build_default_registry
from stagecraft.workflow import TemplateStore, WorkflowManager

app = typer.Typer(help="CLI for stagecraft workflows")

workflow_app = typer.Typer(help="Commands for managing workflows")
template_app = typer.Typer(help="Commands for inspecting workflow templates")
session_app = typer.Typer(help="Commands for inspecting agent sessions")
agent_app = typer.Typer(help="Commands for running agent sessions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(template_app, name="template")
app.add_typer(session_app, name="session")
app.add_typer(agent_app, name="agent")


@app.callback()
def main() -> None:
    """Stagecraft CLI entry point."""
    pass


def _config() -> StagecraftConfig:
    return load_config()


def _manager(config: StagecraftConfig) -> WorkflowManager:
    root = Path(config.project_root)
    database_url = config.database_url or f"sqlite://{root / STATE_DIR / 'workflows.db'}"
    return WorkflowManager(
        project_root=root,
        repository=get_repository(database_url, config=config),
        template_store=TemplateStore(root),
    )


def _fail(exc: Exception) -> None:
    typer.secho(str(exc), fg=typer.colors.RED)
    raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# workflow
@workflow_app.command("list")
def workflow_list(status: Optional[str] = typer.Option(None, help="Filter by status")) -> None:
    """List workflows, most recently updated first."""
    manager = _manager(_config())
    entries = asyncio.run(manager.list(status))
    if not entries:
        typer.echo("No workflows found")
        return
    for entry in entries:
        typer.echo(
            f"{entry.id}\t{entry.request_id}\t{entry.status}\t"
            f"{entry.template}\tstage {entry.current_stage}"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show a workflow's stages, gates and audit trail."""
    manager = _manager(_config())
    workflow = asyncio.run(manager.get(workflow_id))
    if workflow is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    typer.echo(
        f"Workflow {workflow.id} ({workflow.request_id}): {workflow.status} "
        f"[template {workflow.template}]"
    )
    for index, stage in enumerate(workflow.stages):
        marker = ">" if index == workflow.current_stage else " "
        gate = "satisfied" if stage.gate.satisfied else "pending"
        typer.echo(f"{marker} {index}. {stage.name} ({stage.type}): {stage.status}, gate {stage.gate.type} {gate}")
    if workflow.messages:
        typer.echo("Messages:")
        for message in workflow.messages:
            typer.echo(f"  [{message.stage_index}] {message.role}: {message.content}")


@workflow_app.command("create")
def workflow_create(
    request_id: str,
    template: str = typer.Option("standard", help="Template name"),
) -> None:
    """Create a workflow for a request from a template."""
    manager = _manager(_config())
    try:
        workflow = asyncio.run(manager.create(request_id, template))
    except StagecraftError as exc:
        _fail(exc)
    typer.echo(f"Created {workflow.id} ({len(workflow.stages)} stages)")


@workflow_app.command("advance")
def workflow_advance(workflow_id: str) -> None:
    """Advance a workflow past its current stage."""
    manager = _manager(_config())

    async def _advance():
        workflow = await manager.advance(workflow_id)
        await manager.wait_for_background_tasks()
        return workflow

    try:
        workflow = asyncio.run(_advance())
    except StagecraftError as exc:
        _fail(exc)
    if workflow.status == "completed":
        typer.echo(f"{workflow.id} completed")
    else:
        stage = workflow.stages[workflow.current_stage]
        typer.echo(f"{workflow.id} advanced to stage {workflow.current_stage}: {stage.name}")


@workflow_app.command("approve")
def workflow_approve(
    workflow_id: str,
    stage: Optional[int] = typer.Option(None, help="Stage index (default: current)"),
    by: str = typer.Option("human", help="Who approves the gate"),
) -> None:
    """Satisfy the gate of the current stage."""
    manager = _manager(_config())

    async def _approve():
        workflow = await manager.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        index = workflow.current_stage if stage is None else stage
        return await manager.satisfy_gate(workflow_id, index, by)

    try:
        workflow = asyncio.run(_approve())
    except StagecraftError as exc:
        _fail(exc)
    typer.echo(f"Gate satisfied for {workflow.id} stage {workflow.current_stage}")


@workflow_app.command("discard")
def workflow_discard(
    workflow_id: str, reason: str = typer.Option(..., help="Why the workflow is discarded")
) -> None:
    """Discard a workflow with a reason."""
    manager = _manager(_config())
    try:
        workflow = asyncio.run(manager.discard(workflow_id, reason))
    except StagecraftError as exc:
        _fail(exc)
    typer.echo(f"{workflow.id} discarded")


# ----------------------------------------------------------------------
# template
@template_app.command("list")
def template_list() -> None:
    """List built-in and project templates."""
    store = TemplateStore(Path(_config().project_root))
    for template in asyncio.run(store.list()):
        origin = "builtin" if template.builtin else f"v{template.version}"
        typer.echo(f"{template.name}\t{origin}\t{len(template.stages)} stages")


@template_app.command("show")
def template_show(name: str, version: Optional[int] = typer.Option(None)) -> None:
    """Show a template's stages and gates."""
    store = TemplateStore(Path(_config().project_root))
    try:
        if version is None:
            template = asyncio.run(store.get(name))
        else:
            template = asyncio.run(store.get_version(name, version)).snapshot
    except StagecraftError as exc:
        _fail(exc)
    typer.echo(f"{template.name} (v{template.version}): {template.description or ''}".rstrip())
    for index, stage in enumerate(template.stages):
        typer.echo(f"  {index}. {stage.name} ({stage.type}) gate={stage.gate.type}")


# ----------------------------------------------------------------------
# session
@session_app.command("show")
def session_show(session_id: Optional[str] = typer.Argument(None)) -> None:
    """Show a saved session, or list saved sessions when no id is given."""
    root = Path(_config().project_root)
    if session_id is None:
        ids = list_session_ids(root)
        if not ids:
            typer.echo("No sessions found")
            return
        for item in ids:
            typer.echo(item)
        return

    session = asyncio.run(Session.load(session_id, root))
    if session is None:
        typer.echo("Session not found")
        raise typer.Exit(code=1)
    data = session.data
    typer.echo(f"Session {data.id}: {data.role} ({data.model}) outcome={data.outcome or 'running'}")
    typer.echo(
        f"Tokens: {data.token_usage.total} (in: {data.token_usage.input}, "
        f"out: {data.token_usage.output})"
    )
    if data.parent_session_id:
        typer.echo(f"Parent: {data.parent_session_id} (depth {data.nesting_depth})")
    for call in data.tool_calls:
        verdict = "allowed" if call.governance_result.allowed else "denied"
        status = "ok" if call.result.success else "failed"
        typer.echo(f"  - {call.name}: {verdict}, {status}")


# ----------------------------------------------------------------------
# agent
@agent_app.command("run")
def agent_run(
    role: str = typer.Argument(..., help="control or impl"),
    chain: Optional[str] = typer.Option(None, help="Chain id"),
    task: Optional[str] = typer.Option(None, help="Task id"),
    workflow: Optional[str] = typer.Option(None, help="Workflow id"),
    dry_run: bool = typer.Option(False, help="Validate tool calls without running them"),
) -> None:
    """Run one agent session against the configured provider."""
    if role not in ("control", "impl"):
        raise typer.BadParameter("role must be 'control' or 'impl'")
    config = _config()
    try:
        provider = get_provider(config.provider)
    except (StagecraftError, ValueError, OSError) as exc:
        _fail(exc)
    session_config = AgentSessionConfig(
        role=role,
        provider=provider,
        workspace_root=config.project_root,
        chain_id=chain,
        task_id=task,
        workflow_id=workflow,
        max_iterations=config.session.max_iterations,
        max_nesting_depth=config.session.max_nesting_depth,
        dry_run=dry_run,
        retry=config.retry,
        max_tokens=config.budget.max_tokens,
        max_cost=config.budget.max_cost,
        checkpoint=config.session,
        pricing=config.pricing,
    )
    registry = build_default_registry()
    deps = LoopDependencies(
        registry=registry,
        governance=GovernanceGate(registry, config.governance),
        workflow_manager=_manager(config) if workflow else None,
    )

    async def _run():
        try:
            return await run_agent_session(session_config, deps)
        finally:
            await provider.close()

    result = asyncio.run(_run())
    typer.echo(
        f"Session {result.session_id}: {result.stop_reason} after {result.iterations} iterations"
    )
    if not result.success:
        typer.secho(result.error or "Session failed", fg=typer.colors.RED)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
