"""
CLI interface for the AI request orchestration layer.

Provides command-line access to the prompt store, the request log and the
provider configuration.
"""

import sqlite3
import sys
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ai_resilience.config.loader import load_config
from ai_resilience.config.wiring import build_manager
from ai_resilience.core.templates import render_prompt, validate
from ai_resilience.logging_config import configure_logging
from ai_resilience.storage.db import DEFAULT_DB_PATH
from ai_resilience.storage.default_prompts import seed_default_prompts
from ai_resilience.storage.repository import SQLiteAuditLog, SQLitePromptStore, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DB_OPTION = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite database")


def _parse_vars(pairs: List[str]) -> dict:
    """Turn ``key=value`` options into a dict."""
    variables = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid --var '{pair}', expected key=value")
        key, value = pair.split("=", 1)
        variables[key.strip()] = value
    return variables


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines")
):
    """AI request orchestration CLI."""
    configure_logging(log_level, json_logs)
    if ctx.invoked_subcommand is None:
        console.print("AI Resilience - Use --help to see available commands")


@app.command()
def init(db: str = DB_OPTION):
    """Initialize the prompt and request-log tables."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("seed-prompts")
def seed_prompts(db: str = DB_OPTION):
    """Store the default prompts for the four AI operations."""
    try:
        initialize_schema(db)
        inserted = seed_default_prompts(SQLitePromptStore(db))
    except sqlite3.Error as e:
        console.print(f"[red]Error seeding prompts:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not inserted:
        console.print("[yellow]All default prompts are already present[/]")
    for name in inserted:
        console.print(f"[green]✓[/] Seeded {name}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def render(
    name: str = typer.Argument(..., help="Prompt name"),
    var: List[str] = typer.Option([], "--var", "-v", help="Template variable as key=value"),
    version: Optional[str] = typer.Option(None, "--version", help="Prompt version (default: active)"),
    db: str = DB_OPTION
):
    """Render a stored prompt with the given variables."""
    try:
        variables = _parse_vars(var)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    store = SQLitePromptStore(db)
    try:
        prompt = store.get_prompt(name, version) if version else store.get_active_prompt(name)
    except sqlite3.OperationalError as e:
        console.print(f"[red]Error:[/] {str(e)}. Run `ai-resilience init` first.")
        sys.exit(EXIT_CODE_FAIL)

    if prompt is None:
        label = f"{name} {version}" if version else name
        console.print(f"[red]Prompt not found:[/] {label}")
        sys.exit(EXIT_CODE_FAIL)

    validation = validate(prompt.template, variables)
    if validation.missing_variables:
        console.print(
            f"[yellow]Missing variables:[/] {', '.join(validation.missing_variables)}"
        )

    rendered = render_prompt(prompt, variables, default_model="(default)")
    console.print(f"[bold]{rendered.name}[/] {rendered.version} (model: {rendered.model})\n")
    console.print(rendered.processed_template, markup=False, highlight=False)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status(
    config: str = typer.Option(..., "--config", "-c", help="Path to the YAML configuration")
):
    """Show configured providers, their breaker state and available models."""
    try:
        orchestrator_config = load_config(config)
        manager = build_manager(orchestrator_config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="AI Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Enabled")
    table.add_column("Circuit")
    table.add_column("Models")
    for provider in manager.get_provider_status():
        table.add_row(
            provider["name"],
            str(provider["priority"]),
            "[green]yes[/]" if provider["enabled"] else "[red]no[/]",
            provider["circuit_state"],
            ", ".join(provider["models"])
        )
    console.print(table)

    console.print(f"Default model: {orchestrator_config.default_model}")
    console.print(f"Fallback model: {orchestrator_config.fallback_model or 'none'}")
    console.print(f"Daily cost limit: ${orchestrator_config.daily_cost_limit:.2f}")

    available = manager.get_available_models()
    if not available:
        console.print("[red]No enabled providers. Check the provider API key variables.[/]")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"Available models: {', '.join(available)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def usage(
    operation: Optional[str] = typer.Option(None, "--operation", "-o", help="Filter to one operation"),
    days: int = typer.Option(30, "--days", "-d", help="Look-back window in days"),
    db: str = DB_OPTION
):
    """Summarise logged AI requests."""
    try:
        stats = SQLiteAuditLog(db).get_usage_stats(operation=operation, days=days)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No AI request history found[/]")
            console.print("Run `ai-resilience init` and send some requests first.\n")
            sys.exit(EXIT_CODE_PASS)
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    total = stats["total_requests"]
    success_rate = stats["successful_requests"] / total if total else 0.0

    table = Table(title=f"AI Usage ({operation or 'all operations'}, last {days} days)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Requests", str(total))
    table.add_row("Success rate", f"{success_rate:.1%}")
    table.add_row("Total cost", f"${stats['total_cost']:.4f}")
    table.add_row("Total tokens", str(stats["total_tokens"]))
    table.add_row("Avg processing time", f"{stats['avg_processing_time_ms']:.0f} ms")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
