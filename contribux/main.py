"""Main CLI entry point for contribux search."""

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import ContribuxError
from .logging_config import setup_logging
from .models.opportunities import DifficultyLevel, Opportunity, Repository, UserProfile
from .retrieval.filters import RepositoryFilters, SearchFilters
from .search.service import RepositorySearchRequest, SearchRequest, SearchStack, create_search_stack

console = Console()

app = typer.Typer(
    name="contribux",
    help="Hybrid search and personalized ranking of open-source contribution opportunities.",
    add_completion=False,
)


def _run(coro_factory):
    """Run ``coro_factory(stack)`` against a freshly wired search stack."""

    async def run():
        stack = await create_search_stack()
        try:
            return await coro_factory(stack)
        finally:
            await stack.close()

    try:
        return asyncio.run(run())
    except ContribuxError as e:
        console.print(f"[red]✗ {e.error_code}: {e.message}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Exiting...[/yellow]")
        sys.exit(0)


@app.callback()
def main():
    """Load .env and initialize logging before any command."""
    load_dotenv()
    setup_logging()


@app.command()
def search(
    query: str = typer.Argument("", help="Free-text query (empty lists everything matching the filters)"),
    user: str = typer.Option(..., "--user", "-u", help="User ID whose profile personalizes the ranking"),
    language: str | None = typer.Option(None, "--language", "-l", help="Repository language"),
    difficulty: DifficultyLevel | None = typer.Option(None, "--difficulty", help="Difficulty tier"),
    skills: list[str] = typer.Option([], "--skill", "-s", help="Required skill (repeatable, any match)"),
    labels: list[str] = typer.Option([], "--label", help="Issue label (repeatable, any match)"),
    good_first_issue: bool | None = typer.Option(None, "--good-first-issue/--no-good-first-issue"),
    updated_after: datetime | None = typer.Option(None, "--updated-after", help="Only opportunities updated since"),
    page: int = typer.Option(1, "--page", "-p", min=1),
    per_page: int = typer.Option(10, "--per-page", "-n", min=1, max=100),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response as JSON"),
):
    """Search and rank opportunities for a user.

    Examples:
        contribux search "typescript" -u alice --difficulty beginner -s TypeScript
        contribux search -u alice --language Rust --good-first-issue
    """
    request = SearchRequest(
        query=query,
        filters=SearchFilters(
            language=language,
            difficulty=difficulty,
            skills=skills,
            labels=labels,
            good_first_issue=good_first_issue,
            updated_after=updated_after,
        ),
        page=page,
        per_page=per_page,
    )

    async def run(stack: SearchStack):
        return await stack.service.search(user, request)

    response = _run(run)

    if as_json:
        console.print_json(response.model_dump_json())
        return

    table = Table(title=f"{response.total} opportunities (page {response.page})")
    table.add_column("#", justify="right")
    table.add_column("Opportunity")
    table.add_column("Repository")
    table.add_column("Score", justify="right")
    table.add_column("Why")
    for item in response.results:
        table.add_row(
            str(item.rank),
            item.opportunity.title,
            item.repository.full_name if item.repository else item.opportunity.repository_id,
            f"{item.final_score:.3f}",
            ", ".join(item.match_reasons) or "-",
        )
    console.print(table)

    meta = response.metadata
    if meta.degraded:
        console.print(f"[yellow]Degraded: {', '.join(meta.unavailable_sources)} unavailable[/yellow]")
    console.print(
        f"[dim]cache_hit={meta.cache_hit} total={meta.timings_ms.get('total', 0):.1f}ms "
        f"has_more={response.has_more}[/dim]"
    )


@app.command()
def repos(
    query: str = typer.Argument("", help="Free-text query (empty lists everything matching the filters)"),
    user: str = typer.Option(..., "--user", "-u", help="User ID of the caller"),
    language: str | None = typer.Option(None, "--language", "-l", help="Repository language"),
    topics: list[str] = typer.Option([], "--topic", "-t", help="Topic (repeatable, any match)"),
    min_stars: int | None = typer.Option(None, "--min-stars", min=0),
    updated_after: datetime | None = typer.Option(None, "--updated-after", help="Only repositories updated since"),
    page: int = typer.Option(1, "--page", "-p", min=1),
    per_page: int = typer.Option(10, "--per-page", "-n", min=1, max=100),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response as JSON"),
):
    """Search repositories.

    Examples:
        contribux repos "config parser" -u alice -l TypeScript
    """
    request = RepositorySearchRequest(
        query=query,
        filters=RepositoryFilters(
            language=language,
            topics=topics,
            min_stars=min_stars,
            updated_after=updated_after,
        ),
        page=page,
        per_page=per_page,
    )

    async def run(stack: SearchStack):
        return await stack.service.search_repositories(user, request)

    response = _run(run)

    if as_json:
        console.print_json(response.model_dump_json())
        return

    table = Table(title=f"{response.total} repositories (page {response.page})")
    table.add_column("Repository")
    table.add_column("Language")
    table.add_column("Stars", justify="right")
    table.add_column("Relevance", justify="right")
    for item in response.results:
        table.add_row(
            item.repository.full_name,
            item.repository.language or "-",
            str(item.repository.stars),
            f"{item.relevance:.3f}",
        )
    console.print(table)
    if response.metadata.degraded:
        console.print(f"[yellow]Degraded: {', '.join(response.metadata.unavailable_sources)} unavailable[/yellow]")


@app.command()
def load(
    corpus: Path = typer.Argument(..., exists=True, readable=True, help="JSON file with repositories, opportunities and profiles"),
):
    """Load a JSON corpus into the store and index it.

    The file holds ``repositories``, ``opportunities`` and optionally
    ``profiles`` lists in the shape of the API models.
    """
    data = json.loads(corpus.read_text())

    async def run(stack: SearchStack):
        for raw in data.get("repositories", []):
            await stack.db.upsert_repository(Repository.model_validate(raw))
        for raw in data.get("opportunities", []):
            await stack.db.upsert_opportunity(Opportunity.model_validate(raw))
        for raw in data.get("profiles", []):
            await stack.db.upsert_profile(UserProfile.model_validate(raw))
        return await stack.indexer.sync()

    report = _run(run)
    console.print(
        f"[green]✓ Loaded {corpus.name}: {report.indexed} indexed, "
        f"{report.embedded} embedded[/green]"
    )


@app.command()
def reindex():
    """Rebuild the opportunity and repository indices from the store and drop cached results."""
    console.print(Panel("[bold]Contribux reindex[/bold]", border_style="blue"))

    async def run(stack: SearchStack):
        return await stack.indexer.sync()

    report = _run(run)
    console.print(
        f"[green]✓ {report.indexed} indexed, {report.embedded} embedded, "
        f"{report.removed} removed, {report.repositories_indexed} repositories, "
        f"{report.invalidated} cache entries invalidated[/green]"
    )


@app.command()
def stats():
    """Show store, index and cache statistics."""

    async def run(stack: SearchStack):
        return {
            "store": await stack.db.stats(),
            "opportunities": stack.planner.stats(),
            "repositories": stack.repository_planner.stats(),
        }

    console.print_json(json.dumps(_run(run), default=str))


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8080, "--port", "-p", help="Port for API server (default: 8080)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the HTTP search API."""
    import uvicorn

    console.print(Panel(
        "[bold]Contribux Search API[/bold]\n"
        f"http://{host}:{port}  ·  docs at /docs",
        border_style="blue",
    ))
    uvicorn.run("api.server:app", host=host, port=port, reload=reload, log_level="info")


def cli():
    """Entry point."""
    app()


if __name__ == "__main__":
    cli()
