"""Entry point for tokenmeter."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import uvicorn
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from src.config import settings
from src.projects.discovery import discover_projects
from src.projects.path_resolver import PathResolver, display_name
from src.token_tracker.engine import UsageEngine
from src.token_tracker.snapshot import UsageSnapshot, format_tokens

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def _bar(ratio: float, width: int = 30) -> str:
    filled = int(round(min(max(ratio, 0.0), 1.0) * width))
    color = "red" if ratio >= settings.weekly_critical else "yellow" if ratio >= settings.weekly_warning else "green"
    return f"[{color}]{'█' * filled}[/{color}]{'░' * (width - filled)}"


def render_snapshot(snapshot: UsageSnapshot) -> Group:
    windows = Table(show_header=True, header_style="bold")
    windows.add_column("Window")
    windows.add_column("Usage", justify="right")
    windows.add_column("")
    windows.add_column("Tokens", justify="right")
    windows.add_column("Resets in", justify="right")
    windows.add_column("Source", style="dim")
    windows.add_row(
        "Session (5h)", f"{snapshot.session_usage:.0%}", _bar(snapshot.session_usage),
        format_tokens(snapshot.tokens_this_session), snapshot.session_reset_label,
        snapshot.session_source,
    )
    windows.add_row(
        "Today", f"{snapshot.daily_usage:.0%}", _bar(snapshot.daily_usage),
        format_tokens(snapshot.tokens_today), "", snapshot.daily_source,
    )
    windows.add_row(
        "Week", f"{snapshot.weekly_usage:.0%}", _bar(snapshot.weekly_usage),
        format_tokens(snapshot.tokens_this_week), snapshot.weekly_reset_label,
        snapshot.weekly_source,
    )

    periods = Table(show_header=True, header_style="bold", title="Activity")
    periods.add_column("")
    for label in ("24h", "7d", "30d", "All time"):
        periods.add_column(label, justify="right")
    periods.add_row("Tokens", *(format_tokens(n) for n in (
        snapshot.tokens_24h, snapshot.tokens_7d, snapshot.tokens_30d, snapshot.tokens_all_time)))
    periods.add_row("Messages", *(f"{n:,}" for n in (
        snapshot.messages_24h, snapshot.messages_7d, snapshot.messages_30d, snapshot.messages_all_time)))
    periods.add_row("Sessions", *(f"{n:,}" for n in (
        snapshot.sessions_24h, snapshot.sessions_7d, snapshot.sessions_30d, snapshot.sessions_all_time)))

    insights = [
        f"Projected at reset: {snapshot.projected_usage_at_reset:.0%}"
        + (" [red](limit before reset)[/red]" if snapshot.projection_is_warning else ""),
        f"Estimated weekly cost: ${snapshot.estimated_weekly_cost_usd:,.2f}",
        f"Streak: {snapshot.usage_streak} day(s)",
    ]
    change = snapshot.week_over_week_change_pct
    if change is not None:
        insights.append(f"Week over week: {change:+.0f}%")

    return Group(
        Panel(windows, title=f"tokenmeter · {snapshot.updated_at:%H:%M:%S}", style="bold blue"),
        periods,
        Panel("\n".join(insights), title="Insights"),
    )


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting tokenmeter API server", style="bold green"))
    uvicorn.run(
        "src.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_snapshot(as_json: bool) -> None:
    """Run one refresh cycle and print the result."""
    engine = UsageEngine.from_settings(settings)
    try:
        with console.status("[bold green]Reading usage..."):
            snapshot = asyncio.run(engine.refresh())
    finally:
        engine.close()

    if as_json:
        console.print_json(json.dumps(snapshot.to_dict()))
    else:
        console.print(render_snapshot(snapshot))


async def _watch(engine: UsageEngine, interval: float) -> None:
    snapshot = await engine.refresh()
    with Live(render_snapshot(snapshot), console=console, refresh_per_second=1) as live:
        while True:
            await asyncio.sleep(interval)
            snapshot = await engine.refresh()
            live.update(render_snapshot(snapshot))


def run_watch(interval: float) -> None:
    engine = UsageEngine.from_settings(settings)
    try:
        asyncio.run(_watch(engine, interval))
    except KeyboardInterrupt:
        pass
    finally:
        engine.close()


def run_projects(include_missing: bool) -> None:
    projects = discover_projects(settings.projects_path, include_missing=include_missing)
    table = Table(title=f"Projects in {settings.projects_path}", header_style="bold")
    table.add_column("Name")
    table.add_column("Path", style="dim")
    table.add_column("Sessions", justify="right")
    for p in projects:
        table.add_row(p.name, p.path, str(p.session_count))
    console.print(table)


def run_decode(name: str) -> None:
    path = PathResolver().decode(name)
    console.print(f"[bold]{display_name(name)}[/bold]  {path}")


def main() -> None:
    parser = argparse.ArgumentParser(description="tokenmeter: Claude Code usage monitor")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")

    snap_parser = sub.add_parser("snapshot", help="Print current usage once")
    snap_parser.add_argument("--json", action="store_true", help="Output raw JSON")

    watch_parser = sub.add_parser("watch", help="Live usage view")
    watch_parser.add_argument(
        "--interval", type=float, default=settings.refresh_interval_seconds,
        help="Seconds between refreshes",
    )

    proj_parser = sub.add_parser("projects", help="List discovered Claude Code projects")
    proj_parser.add_argument("--all", action="store_true", help="Include projects missing on disk")

    decode_parser = sub.add_parser("decode", help="Decode an encoded project directory name")
    decode_parser.add_argument("name", help="e.g. -Users-alice-My-Project")

    argv = sys.argv[1:]
    # Encoded names start with "-"; stop option parsing after the subcommand
    if argv[:1] == ["decode"] and len(argv) > 1 and argv[1] not in ("-h", "--help", "--"):
        argv.insert(1, "--")
    args = parser.parse_args(argv)

    if args.command == "serve":
        run_server()
    elif args.command == "snapshot":
        run_snapshot(args.json)
    elif args.command == "watch":
        run_watch(args.interval)
    elif args.command == "projects":
        run_projects(args.all)
    elif args.command == "decode":
        run_decode(args.name)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
