#!/usr/bin/env python3
"""LevelUp command-line client.

Talks to a running `levelup serve` instance over HTTP.

Usage:
    levelup serve
    levelup status
    levelup sections
    levelup add-task health "Stretch" --xp 10 --due "2024-05-01 18:00"
    levelup toggle health h1
    levelup history --month 2024-05
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import click
import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from levelup import __version__
from levelup.config import get_config

console = Console()

REQUEST_TIMEOUT = 5

INTENSITY_STYLES = {
    "negative": "red",
    "none": "dim",
    "low": "cyan",
    "medium": "yellow",
    "high": "bold green",
}


class ApiClient:
    """Thin requests wrapper that turns failures into ClickExceptions."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise click.ClickException(f"Cannot reach LevelUp at {self.base_url}: {e}")
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise click.ClickException(f"{method} {path} failed ({response.status_code}): {detail}")
        return response.json()

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Any:
        return self.request("PATCH", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Any:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)


def make_progress_bar(current: int, required: int, width: int = 20) -> str:
    """Create a text-based progress bar."""
    if current <= 0:
        return "[dim]" + "─" * width + "[/dim]"
    filled = min(width, int(width * current / required))
    return f"[cyan]{'█' * filled}[/cyan][dim]{'─' * (width - filled)}[/dim]"


def format_due(due_ms: Optional[int]) -> str:
    if not due_ms:
        return "[dim]end of day[/dim]"
    due = datetime.fromtimestamp(due_ms / 1000).astimezone()
    return due.strftime("%Y-%m-%d %H:%M")


def _client(ctx: click.Context) -> ApiClient:
    return ctx.obj["client"]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--api-url", default=None, help="LevelUp server URL (defaults to LEVELUP_API_URL)")
@click.version_option(__version__, prog_name="levelup")
@click.pass_context
def cli(ctx: click.Context, api_url: Optional[str]) -> None:
    """LevelUp - earn XP for daily tasks, lose it for missed ones."""
    config = get_config()
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["client"] = ApiClient(api_url or config.api_url)


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to LEVELUP_HOST)")
@click.option("--port", type=int, default=None, help="Port (defaults to LEVELUP_PORT)")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Run the LevelUp API server with its overdue and rollover sweeps."""
    import uvicorn

    config = ctx.obj["config"]
    uvicorn.run(
        "levelup.api:build_default_app",
        factory=True,
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
    )


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show level, XP progress and today's totals."""
    state = _client(ctx).get("/api/state")
    who = "Guest mode" if state.get("guest") else state.get("accountId")
    bar = make_progress_bar(state["currentXP"], state["requiredXP"])
    body = "\n".join([
        f"[bold]Level {state['level']}[/bold]  {bar} {state['currentXP']}/{state['requiredXP']} XP",
        f"Total XP: {state['totalXP']:,}",
        f"Today: {state['todayXP']} XP from {state['completedToday']} task(s)",
        f"Streak: {state['streak']}",
    ])
    console.print(Panel(body, title=f"LevelUp - {who}", subtitle=state.get("today", ""), border_style="blue"))


@cli.command()
@click.pass_context
def sections(ctx: click.Context) -> None:
    """List sections and their tasks."""
    state = _client(ctx).get("/api/state")
    table = Table(show_header=True, header_style="bold cyan", border_style="blue", expand=False)
    table.add_column("", width=2, justify="center")
    table.add_column("Section", style="white")
    table.add_column("Task ID", style="dim")
    table.add_column("Task", min_width=20)
    table.add_column("XP", justify="right", style="yellow")
    table.add_column("Due")

    for section in state["sections"]:
        label = f"{section['icon']} {section['name']} [dim]({section['id']})[/dim]"
        if not section["tasks"]:
            table.add_row(" ", label, "-", "[dim]No tasks[/dim]", "-", "-")
            continue
        for i, task in enumerate(section["tasks"]):
            mark = "[green]x[/green]" if task["completed"] else "[dim]o[/dim]"
            table.add_row(
                mark,
                label if i == 0 else "",
                task["id"],
                task["name"],
                str(task["xp"]),
                format_due(task.get("dueAt")),
            )

    if not state["sections"]:
        table.add_row(" ", "[dim]No sections[/dim]", "-", "-", "-", "-")
    console.print(table)


@cli.command()
@click.option("--month", "month", type=click.DateTime(formats=["%Y-%m"]), help="Month as YYYY-MM (defaults to current).")
@click.pass_context
def history(ctx: click.Context, month: Optional[datetime]) -> None:
    """Show the XP ledger for a month."""
    params = {"year": month.year, "month": month.month} if month else None
    data = _client(ctx).get("/api/history", params=params)
    table = Table(show_header=True, header_style="bold cyan", border_style="blue", expand=False)
    table.add_column("Date")
    table.add_column("XP", justify="right")

    for day in data["days"]:
        if day["xp"] == 0 and not day["isToday"]:
            continue
        style = INTENSITY_STYLES.get(day["intensity"], "")
        date_label = f"[bold]{day['date']}[/bold]" if day["isToday"] else day["date"]
        table.add_row(date_label, f"[{style}]{day['xp']:+d}[/{style}]" if style else f"{day['xp']:+d}")

    console.print(table)
    console.print(f"Month total: {data['totalXP']:+d} XP")


@cli.command("add-section")
@click.argument("name")
@click.option("--icon", default="", help="Emoji or short label")
@click.option("--color", default="custom", show_default=True, help="Color tag")
@click.pass_context
def add_section(ctx: click.Context, name: str, icon: str, color: str) -> None:
    """Create an empty section."""
    _client(ctx).post("/api/sections", json={"name": name, "icon": icon, "color": color})
    click.echo(f"Section '{name}' submitted.")


@cli.command("rename-section")
@click.argument("section_id")
@click.argument("name")
@click.option("--icon", default="", help="New icon")
@click.pass_context
def rename_section(ctx: click.Context, section_id: str, name: str, icon: str) -> None:
    """Rename a section (and optionally change its icon)."""
    _client(ctx).patch(f"/api/sections/{section_id}", json={"name": name, "icon": icon})
    click.echo(f"Section {section_id} renamed to '{name}'.")


@cli.command("rm-section")
@click.argument("section_id")
@click.confirmation_option(prompt="Incomplete tasks cost half their XP. Remove section?")
@click.pass_context
def rm_section(ctx: click.Context, section_id: str) -> None:
    """Delete a section and all of its tasks."""
    _client(ctx).delete(f"/api/sections/{section_id}")
    click.echo(f"Section {section_id} removed.")


@cli.command("add-task")
@click.argument("section_id")
@click.argument("name")
@click.option("--xp", type=click.IntRange(min=1), required=True, help="XP reward")
@click.option(
    "--due",
    type=click.DateTime(formats=["%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M"]),
    default=None,
    help="Deadline in server local time; missing it costs the full XP.",
)
@click.pass_context
def add_task(ctx: click.Context, section_id: str, name: str, xp: int, due: Optional[datetime]) -> None:
    """Add a task to a section."""
    payload: dict[str, Any] = {"name": name, "xp": xp}
    if due is not None:
        payload["dueAt"] = due.isoformat()
    _client(ctx).post(f"/api/sections/{section_id}/tasks", json=payload)
    click.echo(f"Task '{name}' ({xp} XP) submitted to {section_id}.")


@cli.command()
@click.argument("section_id")
@click.argument("task_id")
@click.pass_context
def toggle(ctx: click.Context, section_id: str, task_id: str) -> None:
    """Mark a task done (or undo it)."""
    _client(ctx).post(f"/api/sections/{section_id}/tasks/{task_id}/toggle")
    click.echo(f"Toggled {section_id}/{task_id}.")


@cli.command("rm-task")
@click.argument("section_id")
@click.argument("task_id")
@click.pass_context
def rm_task(ctx: click.Context, section_id: str, task_id: str) -> None:
    """Delete a task. Incomplete tasks cost half their XP."""
    _client(ctx).delete(f"/api/sections/{section_id}/tasks/{task_id}")
    click.echo(f"Removed {section_id}/{task_id}.")


@cli.command()
@click.argument("account_id", required=False)
@click.option("--guest", is_flag=True, help="Switch to guest mode (nothing is saved)")
@click.pass_context
def account(ctx: click.Context, account_id: Optional[str], guest: bool) -> None:
    """Show or switch the active account."""
    client = _client(ctx)
    if guest and account_id:
        raise click.UsageError("Pass an ACCOUNT_ID or --guest, not both.")
    if not guest and not account_id:
        state = client.get("/api/state")
        click.echo("guest" if state.get("guest") else state.get("accountId"))
        return
    result = client.put("/api/session/account", json={"accountId": None if guest else account_id})
    click.echo(f"Active account: {'guest' if result['guest'] else result['accountId']}")


def main() -> None:
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
