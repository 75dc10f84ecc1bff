"""Command-line interface for the Campus Concierge."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import settings
from .engine import ConciergeEngine
from .evaluation import run_evaluation
from .exceptions import ConciergeError, KnowledgeBaseLoadError, QuotaExceededError
from .knowledge_base import KnowledgeBase
from .llm_client import create_fallback_client
from .loaders import load_eval_set, load_knowledge_base

# Set up logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# CLI app
app = typer.Typer(
    name="campus-concierge",
    help="Campus Concierge: resolve student questions into campus locations",
    add_completion=False,
)
console = Console()


def _load_kb(path: Optional[Path]) -> KnowledgeBase:
    kb_path = path or settings.resolve_path(settings.knowledge_base_path)
    try:
        return load_knowledge_base(kb_path)
    except KnowledgeBaseLoadError as e:
        console.print(f"[red]Failed to load campus data:[/red]\n{e}")
        raise typer.Exit(1)


@app.command()
def config():
    """Show current configuration (for debugging)."""
    console.print(Panel("Current Configuration", style="bold blue"))

    table = Table(title="Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Status", style="yellow")

    table.add_row("LLM_PROVIDER", settings.llm_provider, "OK")

    if settings.llm_provider == "openai":
        api_key_status = "OK" if settings.openai_api_key else "[yellow]Fallback disabled[/yellow]"
        api_key_display = f"{settings.openai_api_key[:6]}..." if settings.openai_api_key else "Not set"
        table.add_row("OPENAI_API_KEY", api_key_display, api_key_status)
        if settings.openai_base_url:
            table.add_row("OPENAI_BASE_URL", settings.openai_base_url, "Custom endpoint")
        table.add_row("OPENAI_CHAT_MODEL", settings.openai_chat_model, "OK")
    else:
        table.add_row("OLLAMA_URL", settings.ollama_url, "OK")
        table.add_row("OLLAMA_MODEL", settings.ollama_model, "OK")

    table.add_row("ALLOW_LLM_FALLBACK", str(settings.allow_llm_fallback), "OK")
    table.add_row("FALLBACK_TIMEOUT_SECONDS", str(settings.fallback_timeout_seconds), "OK")

    kb_path = settings.resolve_path(settings.knowledge_base_path)
    table.add_row("KNOWLEDGE_BASE_PATH", str(kb_path), "OK" if kb_path.exists() else "[red]MISSING[/red]")
    eval_path = settings.resolve_path(settings.eval_set_path)
    table.add_row("EVAL_SET_PATH", str(eval_path), "OK" if eval_path.exists() else "[red]MISSING[/red]")
    table.add_row("LOG_LEVEL", settings.log_level, "OK")

    console.print(table)


@app.command()
def kb(
    path: Optional[Path] = typer.Option(None, "--path", help="Campus JSON file"),
):
    """List the campus locations in the knowledge base."""
    knowledge_base = _load_kb(path)

    table = Table(title=f"Campus Locations ({len(knowledge_base)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Services", style="green")
    table.add_column("Keywords", style="yellow")

    for location in knowledge_base:
        services = ", ".join(s.name for s in location.services) or "-"
        table.add_row(location.id, location.name, services, ", ".join(sorted(location.keywords)))

    console.print(table)


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to resolve"),
    llm: bool = typer.Option(False, "--llm/--no-llm", help="Allow the generative fallback"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the classifier decision"),
    path: Optional[Path] = typer.Option(None, "--path", help="Campus JSON file"),
):
    """Resolve a single question."""
    knowledge_base = _load_kb(path)
    fallback_client = create_fallback_client(settings) if llm else None
    engine = ConciergeEngine(knowledge_base, fallback_client=fallback_client)

    try:
        response = asyncio.run(engine.resolve(question, allow_llm=llm))
    except QuotaExceededError:
        console.print("[yellow]API limit reached, try again in a minute.[/yellow]")
        raise typer.Exit(1)
    except ConciergeError as e:
        console.print(f"[red]Query failed: {e}[/red]")
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps(response.to_dict()))
        return

    console.print(Panel(response.message, title="Answer", border_style="green"))
    console.print(f"intent: [cyan]{response.intent.value}[/cyan]  action: [cyan]{response.action.value}[/cyan]")

    if response.locations:
        table = Table()
        table.add_column("Building", style="cyan")
        table.add_column("Service", style="green")
        table.add_column("Coordinates", style="dim")
        for loc in response.locations:
            service = loc.service_name or "-"
            if loc.service_location:
                service += f" ({loc.service_location})"
            table.add_row(loc.building_name, service, f"{loc.coordinates.lat}, {loc.coordinates.lng}")
        console.print(table)

    if verbose:
        decision = engine.analyze(question)
        console.print(Panel(json.dumps(decision.to_dict(), indent=2), title="Decision", border_style="dim"))


@app.command("eval")
def evaluate(
    path: Optional[Path] = typer.Option(None, "--path", help="Eval corpus (YAML or JSON)"),
    kb_path: Optional[Path] = typer.Option(None, "--kb", help="Campus JSON file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the report as JSON"),
    show_passes: bool = typer.Option(False, "--all", help="List passing queries too"),
):
    """Run the deterministic intent/action regression suite.

    Exits with status 1 when any query fails.
    """
    knowledge_base = _load_kb(kb_path)
    eval_path = path or settings.resolve_path(settings.eval_set_path)
    try:
        eval_set = load_eval_set(eval_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Failed to load eval set: {e}[/red]")
        raise typer.Exit(1)

    console.print(Panel(
        f"Student support eval set v{eval_set.version} ({eval_set.language})",
        style="bold blue",
    ))

    report = run_evaluation(ConciergeEngine(knowledge_base), eval_set)

    table = Table(title="Results")
    table.add_column("Status")
    table.add_column("Category", style="dim")
    table.add_column("Query")
    table.add_column("Intent")
    table.add_column("Action")
    for outcome in report.outcomes:
        if outcome.passed and not show_passes:
            continue
        status = "[green]PASS[/green]" if outcome.passed else "[red]FAIL[/red]"
        table.add_row(status, outcome.category, outcome.query, outcome.intent.value, outcome.action.value)
    if table.row_count:
        console.print(table)

    summary = Table(title="Summary")
    summary.add_column("Check", style="cyan")
    summary.add_column("Passed", style="green")
    summary.add_row("Intent", f"{report.intent_passes}/{report.total}")
    summary.add_row("Action", f"{report.action_passes}/{report.total}")
    summary.add_row("Full (intent + action)", f"{report.full_passes}/{report.total}")
    console.print(summary)

    if output:
        output.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        console.print(f"[green]Report written to: {output}[/green]")

    if not report.all_passed:
        console.print("\n[bold red]Failures[/bold red]")
        for outcome in report.failures:
            console.print(f"- {outcome.describe_failure()}")
        raise typer.Exit(1)

    console.print("\n[green]All checks passed.[/green]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8081, "--port", "-p", help="Port to bind to"),
):
    """Start the chat API server."""
    console.print(Panel(
        f"Campus Concierge API at http://{host}:{port}/api/chat",
        style="bold cyan",
    ))

    from .chat_api import run_server

    console.print("[dim]Press Ctrl+C to stop[/dim]\n")
    run_server(host=host, port=port)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
