from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Optional

import typer
from rich import print

from .config import (
    CONFIG_ENV_OVERRIDES,
    get_config_path,
    load_config,
    read_config_file,
    write_config_file,
)
from .errors import TrackerError
from .runtime import TrackerRuntime
from .snapshot import LATEST_KEY
from .stats import daily_totals, find_total_mismatches, goal_progress, summarize
from .utils import calculate_duration, format_hours, format_time, now_iso

app = typer.Typer(help="timetracker: offline-tolerant project time tracking")


def _runtime(api_url: str | None, *, bootstrap: bool = True) -> TrackerRuntime:
    cfg = load_config()
    if api_url:
        cfg.api_url = api_url
    logging.basicConfig(level=getattr(logging, cfg.log_level.upper(), logging.WARNING))
    runtime = TrackerRuntime.from_config(cfg, background_writes=False)
    if bootstrap:
        runtime.engine.bootstrap()
    return runtime


def _close(runtime: TrackerRuntime) -> None:
    runtime.engine.close()
    if runtime.cache is not None:
        runtime.cache.close()


@app.command()
def status(api_url: str = typer.Option(None, help="Override the server API url")) -> None:
    """Show where state was loaded from and what is running."""
    runtime = _runtime(api_url)
    try:
        engine = runtime.engine
        state = engine.state
        print(f"[bold]Server[/bold] {runtime.config.api_url} ({engine.status.label})")
        for kind, source in engine.sources.items():
            print(f"- {kind}: loaded from {source}")
        print(f"- Projects: {len(state.projects)}")
        print(f"- Completed sessions: {len(state.completed_sessions)}")
        active = state.project(state.active_project) if state.active_project else None
        print(f"- Active project: {active.name if active else 'none'}")
        for session in state.active_sessions:
            try:
                wall = format_time(calculate_duration(session.start_time, now_iso()))
            except ValueError:
                wall = "unknown"
            print(
                f"- Running: {session.id} ({session.type.value}, "
                f"{format_time(session.duration)} recorded, started {wall} ago)"
            )
        mismatches = find_total_mismatches(state)
        for project_id, (stored, computed) in mismatches.items():
            print(
                f"[yellow]- Total mismatch for {project_id}: "
                f"stored {format_time(stored)}, sessions {format_time(computed)}[/yellow]"
            )
    finally:
        _close(runtime)


@app.command()
def projects(
    api_url: str = typer.Option(None, help="Override the server API url"),
    json_output: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """List projects with their tracked time."""
    runtime = _runtime(api_url)
    try:
        items = runtime.engine.state.projects
        if json_output:
            print(json.dumps([p.to_dict() for p in items], indent=2))
            return
        if not items:
            print("No projects yet")
            return
        for project in items:
            progress = goal_progress(project)
            goal = ""
            if progress is not None and project.goal_hours:
                goal = f" ({progress:.0%} of {format_hours(project.goal_hours)} goal)"
            print(f"- {project.name} ({project.color}): {format_time(project.total_time_spent)}{goal}")
    finally:
        _close(runtime)


@app.command()
def stats(
    days: int = typer.Option(7, min=1, help="Days to include in the daily breakdown"),
    api_url: str = typer.Option(None, help="Override the server API url"),
    json_output: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """Dashboard totals and a per-day breakdown."""
    runtime = _runtime(api_url)
    try:
        state = runtime.engine.state
        summary = summarize(state)
        daily = daily_totals(state.completed_sessions, days)
        if json_output:
            payload = {
                "totalTime": summary.total_time,
                "sessions": summary.session_count,
                "mostActiveProject": (
                    summary.most_active_project.name if summary.most_active_project else None
                ),
                "averageSession": summary.average_session,
                "daily": [{"date": day.isoformat(), "seconds": total} for day, total in daily],
            }
            print(json.dumps(payload, indent=2))
            return
        most_active = summary.most_active_project
        print("[bold]Totals[/bold]")
        print(f"- Time tracked: {format_time(summary.total_time)}")
        print(f"- Sessions: {summary.session_count}")
        print(f"- Most active: {most_active.name if most_active else 'None'}")
        print(f"- Average session: {format_time(summary.average_session)}")
        print(f"\n[bold]Last {days} days[/bold]")
        for day, total in daily:
            print(f"- {day.isoformat()}: {format_time(total)}")
    finally:
        _close(runtime)


@app.command()
def backup(api_url: str = typer.Option(None, help="Override the server API url")) -> None:
    """Write a backup snapshot of the current state now."""
    runtime = _runtime(api_url)
    try:
        snapshot = runtime.engine.backup_now()
        if snapshot is None:
            print("[red]Backup failed; see log output[/red]")
            raise typer.Exit(code=1)
        print(
            f"Backed up {len(snapshot.projects)} projects and "
            f"{len(snapshot.completed_sessions)} sessions at {snapshot.last_backup}"
        )
    finally:
        _close(runtime)


@app.command()
def backups() -> None:
    """List stored backup snapshots, newest first."""
    runtime = _runtime(None, bootstrap=False)
    try:
        store = runtime.engine.snapshots
        keys = [LATEST_KEY, *reversed(store.list_history())]
        found = False
        for key in keys:
            try:
                snapshot = store.read(key)
            except TrackerError as exc:
                print(f"[yellow]- {key}: unreadable ({exc})[/yellow]")
                continue
            if snapshot is None:
                continue
            found = True
            print(
                f"- {key}: {snapshot.last_backup} "
                f"({len(snapshot.projects)} projects, {len(snapshot.completed_sessions)} sessions)"
            )
        if not found:
            print("No backups found")
    finally:
        _close(runtime)


@app.command()
def restore(
    key: Optional[str] = typer.Option(None, help="Backup key (defaults to the newest readable)"),
    api_url: str = typer.Option(None, help="Override the server API url"),
) -> None:
    """Replace local state with a backup snapshot."""
    # Bootstrapping first would overwrite the newest backup with current state.
    runtime = _runtime(api_url, bootstrap=False)
    try:
        snapshot = runtime.engine.restore_from_backup(key)
    except TrackerError as exc:
        print(f"[red]Restore failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        _close(runtime)
    print(
        f"Restored {len(snapshot.projects)} projects and "
        f"{len(snapshot.completed_sessions)} sessions from {snapshot.last_backup}"
    )
    print("[yellow]The server was not changed; local copies now match the backup.[/yellow]")


@app.command()
def export() -> None:
    """Dump the local cache as JSON."""
    runtime = _runtime(None, bootstrap=False)
    try:
        if runtime.cache is None:
            print("[red]Local cache unavailable[/red]")
            raise typer.Exit(code=1)
        print(json.dumps(runtime.cache.export_records(), indent=2))
    finally:
        _close(runtime)


@app.command()
def setting(
    key: str,
    value: Optional[str] = typer.Argument(None, help="New value; omit to read"),
    api_url: str = typer.Option(None, help="Override the server API url"),
) -> None:
    """Read or change a user preference (themeMode, colorPalette)."""
    runtime = _runtime(api_url, bootstrap=False)
    try:
        if value is None:
            current = runtime.settings.get(key)
            if isinstance(current, Enum):
                current = current.value
            print(current if current is not None else "(unset)")
            return
        try:
            stored = runtime.settings.put(key, value)
        except TrackerError as exc:
            print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1) from exc
        print(f"{key} = {stored}")
    finally:
        _close(runtime)


@app.command()
def config(
    set_values: list[str] = typer.Option(
        None, "--set", help="Store KEY=VALUE in the config file; repeat for several"
    ),
) -> None:
    """Show the effective configuration, optionally updating the config file first."""
    try:
        data = read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if set_values:
        for item in set_values:
            key, sep, raw = item.partition("=")
            key = key.strip()
            if not sep or key not in CONFIG_ENV_OVERRIDES:
                print(f"[red]Unknown config setting: {item}[/red]")
                raise typer.Exit(code=1)
            data[key] = _config_value(raw.strip())
        try:
            write_config_file(data)
        except OSError as exc:
            print(f"[red]Failed to write config: {exc}[/red]")
            raise typer.Exit(code=1) from exc
    cfg = load_config()
    print(f"[bold]Config[/bold] {get_config_path()}")
    print(json.dumps(cfg.to_dict(), indent=2))


def _config_value(raw: str) -> object:
    # Numbers and booleans keep their JSON type; anything else is stored as text.
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw
