"""Command line interface for running waypoint workers and inspecting workflows."""

from __future__ import annotations

import asyncio
import importlib
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from waypoint.config import load_config
from waypoint.errors import WaypointError
from waypoint.persistence import WorkflowJournal, WorkflowStatus
from waypoint.runtime import Runtime
from waypoint.store import get_store

app = typer.Typer(help="CLI for waypoint workflows")

# Command groups
worker_app = typer.Typer(help="Commands for running workers")
workflow_app = typer.Typer(help="Commands for inspecting workflows")

app.add_typer(worker_app, name="worker")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main() -> None:
    """Waypoint CLI entry point."""
    pass


def _load_runtime(target: str) -> Runtime:
    module_name, _, attr = target.partition(":")
    if str(Path.cwd()) not in sys.path:
        sys.path.insert(0, str(Path.cwd()))
    module = importlib.import_module(module_name)
    runtime = getattr(module, attr or "runtime", None)
    if not isinstance(runtime, Runtime):
        raise typer.BadParameter(f"{target} does not name a waypoint Runtime")
    return runtime


async def _serve(runtime: Runtime, lifespan: Optional[float]) -> None:
    await runtime.launch()
    try:
        if lifespan is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(lifespan)
    finally:
        await runtime.shutdown()


@worker_app.command("run")
def worker_run(
    target: str = typer.Argument(..., help="Runtime to serve, as module:attribute"),
    config: Optional[Path] = typer.Option(None, help="Path to a YAML config file"),
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run until interrupted)"
    ),
) -> None:
    """
    Launch a runtime and keep it serving until stopped.

    The runtime recovers workflows left incomplete by a previous process,
    then accepts invocations. Options missing from the runtime's own
    configuration are taken from the YAML config and environment.

    Example:
        waypoint worker run myapp.workflows:runtime
        waypoint worker run myapp.workflows:runtime --lifespan 300
    """
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    runtime = _load_runtime(target)
    file_config = load_config(str(config) if config else None)
    if not runtime.config.name:
        runtime.config.name = file_config.name
    if not runtime.config.store_connection:
        runtime.config.store_connection = file_config.store_connection

    typer.echo(f"Starting worker: {target}")
    try:
        asyncio.run(_serve(runtime, lifespan))
    except KeyboardInterrupt:
        typer.echo("Worker stopped")
    except WaypointError as exc:
        typer.secho(f"Worker failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _store_url(store: Optional[str]) -> str:
    url = store or load_config().store_connection
    if not url:
        typer.secho(
            "No store configured; pass --store or set WAYPOINT_SYSTEM_DATABASE_URL",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    return url


async def _with_journal(url: str, action):
    log_store = get_store(url)
    await log_store.connect()
    try:
        return await action(WorkflowJournal(log_store))
    finally:
        await log_store.close()


def _query(url: str, action):
    try:
        return asyncio.run(_with_journal(url, action))
    except WaypointError as exc:
        typer.secho(f"Store error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("list")
def workflow_list(
    status: Optional[WorkflowStatus] = typer.Option(None, help="Only show this status"),
    store: Optional[str] = typer.Option(None, help="Store connection URL"),
) -> None:
    """
    List all workflow instances with their current status.

    Example:
        waypoint workflow list --status RUNNING
        # Output: 0b6c...e1    checkout    RUNNING
    """
    url = _store_url(store)
    workflows = _query(url, lambda j: j.list_instances(status))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.instance_id}\t{wf.workflow_name}\t{wf.status.value}")


@workflow_app.command("show")
def workflow_show(
    instance_id: str,
    store: Optional[str] = typer.Option(None, help="Store connection URL"),
) -> None:
    """
    Show an instance with its arguments, outcome and recorded steps.

    Example:
        waypoint workflow show 0b6c...e1
        # Output: Workflow 0b6c...e1 (checkout): SUCCEEDED
        #         Arguments: {"order_id": "o-1"}
        #         - #1 charge: ok
        #         - #2 ship: ok
    """
    url = _store_url(store)
    wf = _query(url, lambda j: j.get_instance(instance_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.instance_id} ({wf.workflow_name}): {wf.status.value}")
    if wf.arguments:
        typer.echo(f"Arguments: {wf.arguments}")
    if wf.status is WorkflowStatus.SUCCEEDED:
        typer.echo(f"Result: {wf.result}")
    elif wf.error is not None:
        typer.echo(f"Error: {wf.error.type}: {wf.error.message}")
    for step in wf.steps:
        state = f"error {step.error.type}: {step.error.message}" if step.failed else "ok"
        typer.echo(f"- #{step.sequence} {step.step_name}: {state} ({step.completed_at})")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
