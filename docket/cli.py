"""[Layer: Presentation] Typer CLI Commands."""

import time
from importlib.metadata import PackageNotFoundError, version as get_package_version
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from docket.config import get_settings
from docket.core.engine import Engine
from docket.errors import DocketError
from docket.models import RecurrenceRule, SyncReport
from docket.sync.scheduler import PeriodicSync

console = Console()

_WEEKDAY_NAMES = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def _get_version() -> str:
    """Get version from package metadata (single source of truth: pyproject.toml)."""
    try:
        return get_package_version("docket-tasks")
    except PackageNotFoundError:
        return "0.0.0-dev"


app = typer.Typer(
    name="docket",
    help="Tasks that live in your notes, your task store and your calendars.",
)
resource_app = typer.Typer(help="Manage CalDAV calendar resources.")
app.add_typer(resource_app, name="resource")


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _print_report(report: SyncReport) -> None:
    if report.error:
        _fail(f"Sync failed: {report.error}")
    typer.echo(
        f"Pulled {report.pulled}, pushed {report.pushed}, "
        f"skipped {report.skipped_tombstoned} deleted item(s), "
        f"removed {report.deleted_remote} remote item(s)"
    )
    for resource_id in report.busy:
        typer.echo(f"Busy: {resource_id} (a pass is already running)")
    for error in report.errors:
        typer.echo(f"Error: {error}", err=True)


def _parse_days(days: Optional[str]) -> list[int]:
    if not days:
        return []
    parsed = []
    for name in days.split(","):
        key = name.strip().lower()[:3]
        if key not in _WEEKDAY_NAMES:
            raise typer.BadParameter(f"Unknown weekday: {name}")
        parsed.append(_WEEKDAY_NAMES.index(key))
    return parsed


@app.command()
def reconcile(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Markdown file"),
    write: bool = typer.Option(
        True, "--write/--no-write", help="Write task-id markers back into the file"
    ),
) -> None:
    """Sync the checkbox tasks of a document into the task store."""
    text = path.read_text(encoding="utf-8")
    result = Engine().reconcile(str(path.resolve()), text)
    if result.error:
        _fail(f"Reconcile failed: {result.error}")
    if write and result.content != text:
        path.write_text(result.content, encoding="utf-8")
    typer.echo(
        f"Created {len(result.created)}, updated {len(result.updated)}, "
        f"deleted {len(result.deleted_ids)}"
    )
    for failure in result.failed:
        typer.echo(f"Failed: {failure}", err=True)


@app.command()
def tasks(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="todo or done"),
) -> None:
    """List tasks in the store."""
    table = Table(title="Tasks")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("")
    table.add_column("Task")
    table.add_column("Due")
    table.add_column("Repeats")
    table.add_column("Calendar UID", style="dim")
    for task in Engine().list_tasks(status=status):
        rule = task.recurrence_rule
        table.add_row(
            task.id[:8],
            "[x]" if task.completed else "[ ]",
            task.content,
            task.due_date.isoformat() if task.due_date else "",
            f"every {rule.interval} {rule.frequency}" if rule else "",
            task.external_uid or "",
        )
    console.print(table)


@app.command()
def complete(task_id: str = typer.Argument(..., help="Task id")) -> None:
    """Complete a task (recurring tasks spawn their next occurrence)."""
    try:
        result = Engine().complete_task(task_id)
    except DocketError as e:
        _fail(str(e))
        return
    typer.echo(f"Completed: {result.task.content}")
    if result.successor:
        typer.echo(f"Next occurrence due {result.successor.due_date}")


@app.command()
def reopen(task_id: str = typer.Argument(..., help="Task id")) -> None:
    """Mark a completed task as todo again."""
    try:
        task = Engine().reopen_task(task_id)
    except DocketError as e:
        _fail(str(e))
        return
    typer.echo(f"Reopened: {task.content}")


@app.command()
def delete(task_id: str = typer.Argument(..., help="Task id")) -> None:
    """Delete a task from the store, its documents and (on next sync) its calendar."""
    if not Engine().delete_task(task_id):
        _fail(f"Task not found: {task_id}")
    typer.echo("Deleted.")


@app.command()
def repeat(
    task_id: str = typer.Argument(..., help="Task id"),
    frequency: Optional[str] = typer.Argument(
        None, help="daily, weekly, monthly or yearly (omit to stop repeating)"
    ),
    interval: int = typer.Option(1, "--every", "-e", help="Repeat every N units"),
    days: Optional[str] = typer.Option(None, "--days", "-d", help="e.g. mon,wed,fri"),
    week: Optional[int] = typer.Option(
        None, "--week", "-w", help="Week of month: 1-4, or -1 for the last"
    ),
) -> None:
    """Set or clear the recurrence rule of a task."""
    rule = None
    if frequency:
        try:
            rule = RecurrenceRule(
                frequency=frequency,
                interval=interval,
                days_of_week=_parse_days(days),
                week_of_month=week,
            )
        except ValidationError as e:
            _fail(f"Invalid rule: {e}")
            return
    try:
        Engine().set_recurrence(task_id, rule)
    except DocketError as e:
        _fail(str(e))
        return
    typer.echo("Recurrence cleared." if rule is None else "Recurrence set.")


@resource_app.command("add")
def resource_add(
    endpoint: str = typer.Argument(..., help="CalDAV server URL"),
    username: str = typer.Option(..., "--user", "-u"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
    kind: str = typer.Option("task_list", "--kind", "-k", help="task_list or event_calendar"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    calendar_url: Optional[str] = typer.Option(
        None, "--calendar", help="Collection URL (discovered when omitted)"
    ),
    export: bool = typer.Option(
        False, "--export/--no-export", help="Push local tasks without a calendar UID"
    ),
) -> None:
    """Register a CalDAV calendar resource."""
    if kind not in ("task_list", "event_calendar"):
        raise typer.BadParameter("kind must be task_list or event_calendar")
    resource_id = Engine().configure_resource(
        endpoint,
        (username, password),
        kind=kind,
        display_name=name,
        calendar_url=calendar_url,
        export_local_tasks=export,
    )
    typer.echo(f"Added resource {resource_id}")


@resource_app.command("list")
def resource_list() -> None:
    """List configured calendar resources."""
    table = Table(title="Calendar resources")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Collection")
    table.add_column("Enabled")
    for resource in Engine().list_resources():
        table.add_row(
            resource.id,
            resource.display_name,
            resource.kind,
            resource.calendar_url or "(discover)",
            "yes" if resource.enabled else "no",
        )
    console.print(table)


@resource_app.command("remove")
def resource_remove(resource_id: str = typer.Argument(...)) -> None:
    """Remove a calendar resource (its tasks stay in the store)."""
    try:
        Engine().remove_resource(resource_id)
    except DocketError as e:
        _fail(str(e))
        return
    typer.echo("Removed.")


@app.command()
def discover(
    endpoint: str = typer.Argument(..., help="CalDAV server URL"),
    username: str = typer.Option(..., "--user", "-u"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
) -> None:
    """List the calendar collections a CalDAV server offers."""
    try:
        calendars = Engine().discover_calendars(endpoint, (username, password))
    except DocketError as e:
        _fail(str(e))
        return
    if not calendars:
        typer.echo("No calendars found.")
        return
    for calendar in calendars:
        components = ",".join(calendar.components) or "any"
        typer.echo(f"{calendar.display_name}  [{components}]  {calendar.url}")


@app.command()
def sync(
    resource_id: Optional[str] = typer.Argument(None, help="Only this resource"),
) -> None:
    """Run one synchronization pass now."""
    try:
        report = Engine().sync_now(resource_id)
    except DocketError as e:
        _fail(str(e))
        return
    _print_report(report)


@app.command()
def watch(
    interval: Optional[int] = typer.Option(
        None, "--interval", "-i", help="Seconds between passes (default from settings)"
    ),
) -> None:
    """Sync periodically until interrupted."""
    settings = get_settings()
    if not settings.enable_sync:
        _fail("Sync is disabled (DOCKET_ENABLE_SYNC=false).")
    engine = Engine()
    scheduler = PeriodicSync(
        lambda abort: engine.sync_now(abort=abort),
        interval=interval or settings.sync_interval_seconds,
    )
    scheduler.start()
    typer.echo("Watching. Press Ctrl+C to stop.")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        typer.echo("Stopping...")
    finally:
        scheduler.stop(timeout=10)


@app.command()
def version() -> None:
    """Show Docket version."""
    typer.echo(f"docket-tasks {_get_version()}")
