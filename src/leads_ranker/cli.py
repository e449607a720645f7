"""Rich CLI for leads-ranker."""

import asyncio
from pathlib import Path

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.prompt import Confirm
from rich.table import Table

from leads_ranker.config import ProviderNotConfiguredError, display_config, get_settings
from leads_ranker.models import TERMINAL_STATUSES, AIProvider, OptimizationConfig
from leads_ranker.service import RankerService, RankingInProgressError
from leads_ranker.telemetry import configure_logging

app = typer.Typer(
    name="leads-ranker",
    help="🏆 LLM lead ranking with genetic prompt optimization",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()

POLL_INTERVAL = 0.5


def _service() -> RankerService:
    settings = get_settings()
    configure_logging(settings.debug)
    return RankerService.from_settings(settings)


def _fail(message: str):
    rprint(f"[red]Error:[/] {message}")
    raise typer.Exit(1)


@app.command()
def config():
    """Show current configuration (secrets masked)."""
    display_config()


@app.command("import-leads")
def import_leads(
    csv_file: Path = typer.Argument(..., help="Leads CSV (account_name, lead_first_name, lead_last_name, ...)"),
):
    """Replace all leads (and rankings) with the contents of a CSV file."""
    if not csv_file.is_file():
        _fail(f"File not found: {csv_file}")
    service = _service()
    try:
        imported = service.import_leads(csv_file.read_text(encoding="utf-8"))
    except ValueError as e:
        _fail(str(e))
    rprint(f"[green]✓[/] Imported [bold]{imported}[/] leads")


@app.command("load-test-data")
def load_test_data(
    csv_file: Path = typer.Option(None, "--file", "-f", help="Leads CSV (defaults to LEADS_CSV_PATH)"),
):
    """Load the sample leads and reset prompts to the default (v1, active)."""
    service = _service()
    try:
        loaded = service.load_test_data(csv_file)
    except FileNotFoundError as e:
        _fail(str(e))
    rprint(f"[green]✓[/] Loaded [bold]{loaded}[/] leads and the default prompt")


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete all leads, rankings, prompts and AI call logs."""
    if not yes and not Confirm.ask("[yellow]Delete ALL data?[/]"):
        raise typer.Abort()
    _service().clear_all()
    rprint("[green]✓[/] All data cleared")


async def _follow_ranking(service: RankerService, provider: AIProvider | None) -> None:
    batch_id = service.start_ranking(provider)
    rprint(f"[dim]Batch: {batch_id}[/]")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
    ) as bar:
        task = bar.add_task("Ranking", total=None)
        while True:
            progress = service.get_ranking_progress(batch_id)
            bar.update(
                task,
                total=progress.total or None,
                completed=progress.completed,
                description=progress.current_company or "Ranking",
            )
            if progress.status in TERMINAL_STATUSES:
                break
            await asyncio.sleep(POLL_INTERVAL)

    await service.wait_for(batch_id)
    progress = service.get_ranking_progress(batch_id)
    if progress.status == "error":
        _fail(progress.error or "ranking failed")
    rprint(f"[green]✓[/] Ranked [bold]{progress.completed}[/] leads")


@app.command()
def rank(
    provider: AIProvider = typer.Option(None, "--provider", "-p", help="LLM provider (defaults to AI_PROVIDER)"),
):
    """Rank every lead, one LLM call per company."""
    rprint(Panel.fit("🏆 [bold cyan]Ranking Leads[/]", border_style="cyan"))
    service = _service()
    try:
        asyncio.run(_follow_ranking(service, provider))
    except (ProviderNotConfiguredError, RankingInProgressError) as e:
        _fail(str(e))


async def _follow_optimization(
    service: RankerService,
    eval_set: Path | None,
    provider: AIProvider | None,
    config: OptimizationConfig,
) -> None:
    eval_leads = service.load_eval_set(eval_set)
    run_id = service.start_optimization(eval_leads, provider, config)
    rprint(f"[dim]Run: {run_id} · {len(eval_leads)} eval leads[/]")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("best {task.fields[best]:.3f}"),
        console=console,
    ) as bar:
        task = bar.add_task("Initial population", total=config.generations, best=0.0)
        while True:
            progress = service.get_optimization_progress(run_id)
            description = (
                f"Generation {progress.current_generation}" if progress.current_generation else "Initial population"
            )
            bar.update(task, completed=progress.current_generation, description=description, best=progress.best_fitness)
            if progress.status in TERMINAL_STATUSES:
                break
            await asyncio.sleep(POLL_INTERVAL)

    await service.wait_for(run_id)
    progress = service.get_optimization_progress(run_id)
    if progress.status == "error":
        _fail(progress.error or "optimization failed")

    rprint(f"\n[green]✓[/] Best fitness [bold]{progress.best_fitness:.3f}[/] after {progress.evaluations_run} evaluations")
    if progress.current_best_prompt_preview:
        rprint(Panel(progress.current_best_prompt_preview, title="Best prompt (preview)", border_style="dim"))
    rprint("[dim]Review with `leads-ranker history`, then `leads-ranker activate <version>`[/]")


@app.command()
def optimize(
    eval_set: Path = typer.Option(None, "--eval-set", "-e", help="Eval set CSV (defaults to EVAL_SET_PATH)"),
    provider: AIProvider = typer.Option(None, "--provider", "-p", help="LLM provider (defaults to AI_PROVIDER)"),
    population_size: int = typer.Option(6, "--population", min=3, max=20, help="Candidates per generation"),
    generations: int = typer.Option(5, "--generations", "-g", min=1, max=20, help="Number of generations"),
    sample_size: int = typer.Option(30, "--sample-size", "-s", min=10, max=100, help="Eval leads per evaluation"),
):
    """Evolve the active prompt against the eval set; the winner is saved inactive."""
    rprint(Panel.fit("🧬 [bold magenta]Prompt Optimization[/]", border_style="magenta"))
    service = _service()
    config = OptimizationConfig(population_size=population_size, generations=generations, sample_size=sample_size)
    try:
        asyncio.run(_follow_optimization(service, eval_set, provider, config))
    except (ValueError, FileNotFoundError) as e:
        _fail(str(e))


@app.command()
def history():
    """List prompt versions, newest first."""
    versions = _service().get_optimization_history()
    if not versions:
        rprint("[yellow]No prompt versions yet.[/]")
        return

    table = Table(title="Prompt Versions", show_header=True, header_style="bold cyan")
    table.add_column("Version", justify="right")
    table.add_column("Fitness", justify="right")
    table.add_column("Generation", justify="right")
    table.add_column("Parent", justify="right")
    table.add_column("Active")
    table.add_column("Created", style="dim")
    for p in versions:
        table.add_row(
            str(p.version),
            f"{p.eval_score:.3f}" if p.eval_score is not None else "-",
            str(p.generation) if p.generation is not None else "-",
            str(p.parent_version) if p.parent_version is not None else "-",
            "[green]●[/]" if p.is_active else "",
            p.created_at or "",
        )
    console.print(table)


@app.command()
def activate(version: int = typer.Argument(..., help="Prompt version to activate")):
    """Make a prompt version the active ranking prompt."""
    try:
        _service().activate_prompt(version)
    except ValueError as e:
        _fail(str(e))
    rprint(f"[green]✓[/] Prompt v{version} is now active")


@app.command()
def stats():
    """Show ranking counts and AI call costs."""
    s = _service().stats()
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total leads", str(s.total_leads))
    table.add_row("Ranked", str(s.ranked_leads))
    table.add_row("Relevant", str(s.relevant_leads))
    table.add_row("Irrelevant", str(s.irrelevant_leads))
    table.add_row("AI calls", str(s.ai_calls.total_calls))
    table.add_row("Cost", f"${s.ai_calls.total_cost:.4f}")
    table.add_row("Tokens (in/out)", f"{s.ai_calls.total_input_tokens:,} / {s.ai_calls.total_output_tokens:,}")
    table.add_row("Avg duration", f"{s.ai_calls.avg_duration_ms:.0f} ms")
    console.print(table)


@app.command()
def export(
    output: Path = typer.Option(Path("top_leads.csv"), "--output", "-o", help="CSV file to write"),
    top_n: int = typer.Option(5, "--top", "-n", min=1, max=50, help="Leads per company"),
):
    """Export the top N ranked leads of each company as CSV."""
    content = _service().export_top_leads(top_n)
    output.write_text(content, encoding="utf-8")
    rows = max(content.count("\n") - 1, 0)
    rprint(f"[green]✓[/] Wrote {rows} leads to [bold]{output}[/]")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Start the HTTP API server."""
    import uvicorn

    configure_logging(get_settings().debug)
    rprint(Panel.fit(f"🌐 [bold green]Serving Leads Ranker on {host}:{port}[/]", border_style="green"))
    uvicorn.run("leads_ranker.api:create_app", host=host, port=port, reload=reload, factory=True)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
