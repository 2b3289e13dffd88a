"""
CLI interface for AI Quota Guard.

Provides operator access to the model catalog and per-user quota state.
"""

import sqlite3
import sys
from datetime import timedelta
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ai_quota_guard.config.loader import QuotaConfig, default_config, load_quota_config
from ai_quota_guard.config.logging_setup import configure_logging
from ai_quota_guard.core.day_boundary import day_key, utc_now
from ai_quota_guard.core.limiter import ModelQuotaLimiter
from ai_quota_guard.core.selector import QuotaSelector
from ai_quota_guard.storage.repository import UsageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def build_limiter(config: QuotaConfig) -> ModelQuotaLimiter:
    """Assemble a limiter from loaded configuration."""
    settings = config.settings
    repository = UsageRepository(
        db_path=settings.db_path,
        tz=settings.tz,
        degraded_mode=settings.degraded_increment
    )
    return ModelQuotaLimiter(QuotaSelector(config.registry, settings.tz), repository)


def _format_time(moment) -> str:
    return moment.strftime("%Y-%m-%d %H:%M %Z") if moment else "-"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to quota configuration YAML (defaults to the built-in catalog)"
    )
):
    """AI Quota Guard CLI."""
    configure_logging()
    try:
        ctx.obj = load_quota_config(config) if config else default_config()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        console.print("AI Quota Guard - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage database."""
    try:
        initialize_schema(ctx.obj.settings.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def models(ctx: typer.Context):
    """List configured models in the order they are tried."""
    table = Table(title="Model Registry")
    table.add_column("Priority", justify="right")
    table.add_column("Name")
    table.add_column("Display name")
    table.add_column("Daily limit", justify="right")
    table.add_column("Cost")
    table.add_column("Cooldown (h)", justify="right")

    for model in ctx.obj.registry:
        table.add_row(
            str(model.priority),
            model.name,
            model.display_name,
            str(model.daily_limit),
            model.cost.value,
            f"{model.cooldown_hours:g}"
        )
    console.print(table)


@app.command()
def status(ctx: typer.Context, user: str = typer.Argument(..., help="User identifier")):
    """Show today's quota and cooldown state for a user."""
    summary = build_limiter(ctx.obj).usage_stats(user)

    table = Table(title=f"Quota for {user}")
    table.add_column("Model")
    table.add_column("Remaining", justify="right")
    table.add_column("Cooldown")

    for row in summary.models:
        cooldown = f"{row.minutes_remaining} min" if row.in_cooldown else "-"
        table.add_row(row.display_name, str(row.remaining), cooldown)

    console.print(table)
    console.print(f"Current model: {summary.current_model}")
    console.print(f"Requests today: {summary.total_requests_today}")
    console.print(f"Resets at: {_format_time(summary.reset_time)}")
    if summary.all_models_exhausted:
        console.print(f"[yellow]Next available at:[/] {_format_time(summary.next_available_at)}")


@app.command()
def check(
    ctx: typer.Context,
    user: str = typer.Argument(..., help="User identifier"),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code if no model is available"
    )
):
    """Decide which model would serve the user's next request.

    Read-only: usage is not recorded.
    """
    decision = build_limiter(ctx.obj).check(user)

    if decision.allowed:
        console.print(
            f"[green]Allowed:[/] {decision.selected_model.display_name} "
            f"({decision.remaining_after_this_request} remaining after this request)"
        )
    else:
        console.print(f"[red]Denied:[/] {decision.message}")
        console.print(f"Next available at: {_format_time(decision.next_available_at)}")
    if decision.degraded:
        console.print(f"[yellow]Warning:[/] {decision.message}")

    if enforced and not decision.allowed:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def record(
    ctx: typer.Context,
    user: str = typer.Argument(..., help="User identifier"),
    model: str = typer.Argument(..., help="Model name to charge")
):
    """Record one request for a user against a model."""
    if ctx.obj.registry.get(model) is None:
        console.print(f"[red]Unknown model:[/] {model}")
        sys.exit(EXIT_CODE_FAIL)

    if not build_limiter(ctx.obj).record(user, model):
        console.print("[red]Failed to record usage[/] (run `ai-quota-guard init` first?)")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Recorded request for {user} on {model}")
    sys.exit(EXIT_CODE_PASS)


@app.command(name="next")
def next_available(ctx: typer.Context, user: str = typer.Argument(..., help="User identifier")):
    """Show which model becomes available next for a user."""
    upcoming = build_limiter(ctx.obj).next_available(user)
    console.print(f"Model: {upcoming.model.display_name}")
    console.print(f"Available at: {_format_time(upcoming.available_at)}")
    console.print(f"Reason: {upcoming.reason.value}")


@app.command()
def prune(
    ctx: typer.Context,
    days: int = typer.Option(30, "--days", "-d", min=1, help="Keep this many past days")
):
    """Delete usage counters older than the given number of days."""
    settings = ctx.obj.settings
    cutoff = day_key(utc_now() - timedelta(days=days), settings.tz)
    repository = UsageRepository(db_path=settings.db_path, tz=settings.tz)
    try:
        deleted = repository.prune_before(cutoff)
    except sqlite3.Error as e:
        console.print(f"[red]Error pruning usage:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Deleted {deleted} rows before {cutoff}")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
