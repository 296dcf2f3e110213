"""Command line interface for onboarding workflows."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from onboardflow import OnboardingEngine, get_repository, get_transport
from onboardflow.contracts import InstanceQuery, InstanceStatus, WorkflowType
from onboardflow.errors import NotFound, OnboardflowError
from onboardflow.templates import TemplateService, load_template_file, validate_template

app = typer.Typer(help="CLI for onboardflow workflows")

# Command groups
template_app = typer.Typer(help="Commands for managing workflow templates")
instance_app = typer.Typer(help="Commands for running workflow instances")
step_app = typer.Typer(help="Commands for moving steps through their lifecycle")

app.add_typer(template_app, name="template")
app.add_typer(instance_app, name="instance")
app.add_typer(step_app, name="step")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """onboardflow CLI entry point."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _engine() -> OnboardingEngine:
    return OnboardingEngine(get_repository(), get_transport())


def _parse_date(value: Optional[str], option: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=option)


def _fail(error: OnboardflowError) -> NoReturn:
    typer.echo(f"Error: {error}")
    raise typer.Exit(code=1)


@template_app.command("validate")
def template_validate(path: Path) -> None:
    """Check a YAML template file without storing it."""
    try:
        template = load_template_file(path)
        validate_template(template)
    except OnboardflowError as e:
        _fail(e)
    typer.echo(f"Template {template.name!r} is valid ({len(template.steps)} steps)")


@template_app.command("load")
def template_load(path: Path) -> None:
    """
    Store a YAML template file in the configured repository.

    Example:
        onboardflow template load templates/engineering.yaml
        # Output: Loaded template 'Engineering onboarding' as 0b6f...
    """
    try:
        template = load_template_file(path)
        template = asyncio.run(TemplateService(get_repository()).create(template))
    except OnboardflowError as e:
        _fail(e)
    typer.echo(f"Loaded template {template.name!r} as {template.id}")


@template_app.command("list")
def template_list(
    workflow_type: Optional[WorkflowType] = typer.Option(None, "--type"),
    active_only: bool = typer.Option(False, "--active-only"),
) -> None:
    """List stored templates."""
    service = TemplateService(get_repository())
    templates = asyncio.run(service.list(workflow_type=workflow_type, active_only=active_only))
    if not templates:
        typer.echo("No templates found")
        return
    for t in templates:
        typer.echo(f"{t.id}\t{t.name}\t{t.workflow_type.value}\t{t.status.value}")


@instance_app.command("start")
def instance_start(
    template_id: str,
    employee_id: str,
    start_date: Optional[str] = typer.Option(None, help="YYYY-MM-DD, defaults to today"),
    buddy: Optional[str] = typer.Option(None, help="Buddy employee id"),
    manager: Optional[str] = typer.Option(None, help="Manager employee id"),
    created_by: Optional[str] = typer.Option(None, "--created-by"),
) -> None:
    """Instantiate a template for an employee."""
    start = _parse_date(start_date, "--start-date") or date.today()
    try:
        instance = asyncio.run(
            _engine().instantiate(
                template_id,
                employee_id,
                start,
                buddy_id=buddy,
                manager_id=manager,
                created_by=created_by,
            )
        )
    except OnboardflowError as e:
        _fail(e)
    typer.echo(f"Started instance {instance.id} for {employee_id}")


@instance_app.command("list")
def instance_list(
    employee: Optional[str] = typer.Option(None, help="Filter by employee id"),
    status: Optional[List[InstanceStatus]] = typer.Option(None, help="Filter by status"),
    limit: Optional[int] = typer.Option(None),
) -> None:
    """
    List workflow instances, newest first.

    Example:
        onboardflow instance list --employee emp-42
        # Output: 5f1c...    emp-42    active    40%
    """
    query = InstanceQuery(employee_id=employee, statuses=status or None, limit=limit)
    instances = asyncio.run(_engine().list_instances(query))
    if not instances:
        typer.echo("No instances found")
        return
    for i in instances:
        typer.echo(f"{i.id}\t{i.employee_id}\t{i.status.value}\t{i.overall_progress}%")


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """Show progress, steps and open exceptions of one instance."""
    try:
        report = asyncio.run(_engine().get_status(instance_id))
    except NotFound:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)

    instance, summary = report.instance, report.progress
    typer.echo(
        f"Instance {instance.id}: {instance.status.value} "
        f"{summary.overall_progress}% ({summary.current_stage})"
    )
    typer.echo(f"Employee: {instance.employee_id}  Template: {instance.template_name}")
    for step in report.steps:
        flag = "" if step.required else " (optional)"
        typer.echo(f"- [{step.order_index}] {step.name}{flag}: {step.status.value} due {step.due_date}")
    for exc in report.open_exceptions:
        typer.echo(f"! {exc.severity.value}: {exc.title}")


@instance_app.command("recompute")
def instance_recompute(instance_id: str) -> None:
    """Re-derive progress and status (for example to detect overdue steps)."""
    try:
        summary = asyncio.run(_engine().recompute(instance_id))
    except OnboardflowError as e:
        _fail(e)
    typer.echo(
        f"{instance_id}: {summary.overall_progress}% "
        f"{summary.current_stage}, {summary.overdue} overdue"
    )


@step_app.command("start")
def step_start(instance_id: str, step_id: str, actor: str = typer.Option(..., "--actor")) -> None:
    """Move a step to in_progress."""
    try:
        step = asyncio.run(_engine().start_step(instance_id, step_id, actor))
    except OnboardflowError as e:
        _fail(e)
    typer.echo(f"{step.name}: {step.status.value}")


@step_app.command("complete")
def step_complete(
    instance_id: str,
    step_id: str,
    actor: str = typer.Option(..., "--actor"),
    hours: Optional[float] = typer.Option(None, help="Actual hours spent"),
) -> None:
    """Mark a step completed."""
    try:
        step = asyncio.run(_engine().complete_step(instance_id, step_id, actor, hours))
    except OnboardflowError as e:
        _fail(e)
    typer.echo(f"{step.name}: {step.status.value}")


@step_app.command("skip")
def step_skip(
    instance_id: str,
    step_id: str,
    actor: str = typer.Option(..., "--actor"),
    reason: str = typer.Option(..., "--reason"),
    waive: bool = typer.Option(False, "--waive", help="Allow skipping a required step"),
) -> None:
    """Skip a step."""
    try:
        step = asyncio.run(_engine().skip_step(instance_id, step_id, actor, reason, waive))
    except OnboardflowError as e:
        _fail(e)
    typer.echo(f"{step.name}: {step.status.value}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
