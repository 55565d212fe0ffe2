"""
CLI for autoaccept.

Checks commands against the risk classifier, drives the auto-accept
agents against local DevTools targets, and manages settings, counters
and the decision log.
"""

import asyncio
import json
import sys
import logging
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from autoaccept import __version__
from autoaccept.classifier import classify
from autoaccept.config import (
    DEFAULTS,
    ENABLED_KEY,
    base_port,
    effective_settings,
    load_config,
    parse_value,
    write_setting,
)
from autoaccept.database import GLOBAL_SCOPE, Database, Decision
from autoaccept.models import severity_label


console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def get_db() -> Database:
    return Database()


def setting_key(name: str) -> str:
    """Accept both ``safe_mode`` and ``autoaccept.safe_mode``.

    >>> setting_key("safe_mode")
    'autoaccept.safe_mode'
    """
    return name if name.startswith("autoaccept.") else f"autoaccept.{name}"


@click.group()
@click.version_option(__version__, prog_name="autoaccept")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose: bool):
    """autoaccept - Auto-approve agent prompts in DevTools-enabled editors, safely."""
    setup_logging(verbose)


@main.command()
@click.argument("command")
@click.option("--workspace", "-w", multiple=True, help="Workspace root for the path guard")
@click.option("--json", "as_json", is_flag=True, help="Print the verdict as JSON")
def check(command: str, workspace: tuple, as_json: bool):
    """Classify a command with the current configuration.

    Exits 1 when the command is unsafe.
    """
    db = get_db()
    verdict = classify(command, load_config(db), workspace_roots=workspace)

    if as_json:
        click.echo(json.dumps(verdict.model_dump()))
    else:
        color = "green" if verdict.safe else "red"
        lines = [
            f"Verdict: [{color}]{'SAFE' if verdict.safe else 'UNSAFE'}[/{color}]",
            f"Score: {verdict.score}",
            f"Severity: {severity_label(verdict.level)}",
        ]
        if verdict.reason:
            lines.append(f"Reason: {verdict.reason}")
        if verdict.decoded_command:
            lines.append(f"Decoded: {verdict.decoded_command}")
        console.print(Panel("\n".join(lines), title="Classification"))

    if not verdict.safe:
        sys.exit(1)


@main.command()
@click.option("--port", "-p", type=int, help="DevTools base port (defaults to the stored setting)")
@click.option("--interval", default=5.0, show_default=True, help="Seconds between control cycles")
@click.option("--workspace", "-w", multiple=True, help="Workspace root for the path guard")
def run(port: Optional[int], interval: float, workspace: tuple):
    """Run the auto-accept loop until interrupted."""
    from autoaccept.cdp.manager import SessionManager
    from autoaccept.controller import Controller

    db = get_db()
    port = port or base_port(db)
    manager = SessionManager(base_port=port, workspace_roots=workspace)
    controller = Controller(manager, db, interval=interval,
                            workspace=workspace[0] if workspace else None)

    console.print(f"Watching DevTools ports around {port} (Ctrl+C to stop)")
    try:
        asyncio.run(controller.run())
    except KeyboardInterrupt:
        pass

    stats = db.get_stats()
    console.print(f"[green][OK][/green] Stopped. Lifetime: {stats.accepted} accepted, {stats.blocked} blocked")


@main.command()
@click.option("--port", "-p", type=int, help="DevTools base port (defaults to the stored setting)")
def targets(port: Optional[int]):
    """List DevTools targets that can be driven."""
    from autoaccept.cdp.discovery import discover

    port = port or base_port(get_db())
    found = asyncio.run(discover(port))

    if not found:
        console.print(f"[yellow]No DevTools targets found around port {port}[/yellow]")
        console.print("[dim]Start the editor with --remote-debugging-port to enable auto-accept[/dim]")
        return

    table = Table(title="DevTools Targets", show_header=True)
    table.add_column("Port", justify="right")
    table.add_column("Id", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Title")

    for target_port, descriptor in found:
        table.add_row(str(target_port), descriptor.id[:16], descriptor.type, descriptor.title[:60])

    console.print(table)


@main.command()
@click.option("--workspace", "-w", help="Show counters for one workspace")
@click.option("--reset", is_flag=True, help="Zero the counters")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def stats(workspace: Optional[str], reset: bool, yes: bool):
    """Show accepted / blocked counters."""
    db = get_db()

    if reset:
        target = workspace or "all scopes"
        if not yes and not click.confirm(f"Reset counters for {target}?"):
            console.print("Cancelled")
            return
        count = db.reset_stats(workspace)
        console.print(f"[green][OK][/green] Reset {count} counter row(s)")
        return

    scopes = [GLOBAL_SCOPE] + ([workspace] if workspace else [])
    table = Table(title="Auto-accept Stats", show_header=True)
    table.add_column("Scope", style="cyan")
    table.add_column("Accepted", justify="right", style="green")
    table.add_column("Blocked", justify="right", style="red")
    table.add_column("Total", justify="right")

    for scope in scopes:
        row = db.get_stats(scope)
        table.add_row(scope, str(row.accepted), str(row.blocked), str(row.total))

    console.print(table)


@main.command(name="log")
@click.option("--limit", "-n", default=20, help="Maximum rows")
@click.option("--decision", "-d", type=click.Choice(["ALLOW", "DENY", "ASK_USER"]),
              help="Only show one decision type")
@click.option("--purge", is_flag=True, help="Delete the decision log")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def show_log(limit: int, decision: Optional[str], purge: bool, yes: bool):
    """Show recent classifier decisions."""
    db = get_db()

    if purge:
        if not yes and not click.confirm("Delete all recorded decisions?"):
            console.print("Cancelled")
            return
        count = db.purge_decisions()
        console.print(f"[green][OK][/green] Deleted {count} decision(s)")
        return

    result = db.list_decisions(limit=limit, decision=decision)
    if not result["rows"]:
        console.print("[yellow]No decisions recorded[/yellow]")
        return

    table = Table(title=f"Decisions ({len(result['rows'])} of {result['total']})", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Decision")
    table.add_column("Score", justify="right")
    table.add_column("Command", style="cyan")
    table.add_column("Reason")

    styles = {"ALLOW": "green", "DENY": "red", "ASK_USER": "yellow"}
    for row in (Decision(**r) for r in result["rows"]):
        style = styles.get(row.decision, "white")
        table.add_row(
            row.timestamp[:19],
            f"[{style}]{row.decision}[/{style}]",
            "" if row.score is None else str(row.score),
            (row.command or "")[:60],
            row.reason or "",
        )

    console.print(table)


@main.group()
def config():
    """View or change auto-accept settings."""
    pass


@config.command(name="show")
def config_show():
    """Print every setting with its effective value."""
    db = get_db()
    stored = {row["key"] for row in db.list_settings()}

    table = Table(title="Settings", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_column("Source", style="dim")

    for key, value in effective_settings(db).items():
        table.add_row(key, json.dumps(value), "stored" if key in stored else "default")

    console.print(table)


@config.command(name="set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set KEY to VALUE (JSON, or a plain string)."""
    key = setting_key(key)
    try:
        write_setting(get_db(), key, parse_value(value))
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        console.print(f"\nKnown settings: {', '.join(sorted(DEFAULTS))}")
        sys.exit(1)
    console.print(f"[green][OK][/green] {key} = {value}")


@config.command(name="unset")
@click.argument("key")
def config_unset(key: str):
    """Restore KEY to its default."""
    key = setting_key(key)
    if get_db().delete_setting(key):
        console.print(f"[green][OK][/green] {key} restored to default")
    else:
        console.print(f"[yellow]{key} was not set[/yellow]")


@main.command()
def enable():
    """Turn auto-accept on."""
    write_setting(get_db(), ENABLED_KEY, True)
    console.print("[green][OK][/green] Auto-accept enabled")


@main.command()
def disable():
    """Turn auto-accept off. A running loop stops its agents on the next cycle."""
    write_setting(get_db(), ENABLED_KEY, False)
    console.print("[green][OK][/green] Auto-accept disabled")


@main.command()
def hook():
    """PreToolUse hook entry point (reads the event from stdin)."""
    from autoaccept.hook import main as hook_main

    sys.exit(hook_main())


if __name__ == "__main__":
    main()
