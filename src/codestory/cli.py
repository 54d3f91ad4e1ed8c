"""Code Story CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from codestory import __version__
from codestory.core.config import Settings, get_settings
from codestory.core.errors import CodeStoryError, GenerationFailedError
from codestory.core.logging import configure_logging
from codestory.models import Story, is_valid_story_id
from codestory.pipeline import PipelineEvent, PipelineEventType, StoryGenerator, probe
from codestory.services import StoryCatalog
from codestory.viewer import (
    StoryFetcher,
    browse_story,
    manifest_table,
    normalize_story_reference,
    resolve_manifest_url,
    resolve_story_url,
    show_story,
)

app = typer.Typer(
    name="codestory",
    help="Code Story: narrated walkthroughs of a codebase, written by a coding agent.",
    no_args_is_help=True,
)
console = Console()

# Exit codes for signal-terminated generations (128 + signal number)
EXIT_SIGINT = 130
EXIT_SIGTERM = 143

# Global state for options set by the callback, used by commands
_verbose: int = 0
_stories_dir: Path | None = None


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    stories_dir: Annotated[
        Path | None,
        typer.Option(
            "--stories-dir",
            "-d",
            help="Story catalog directory (default: ./stories).",
            envvar="STORIES_DIR",
        ),
    ] = None,
) -> None:
    """Code Story: narrated walkthroughs of a codebase, written by a coding agent."""
    global _verbose, _stories_dir
    _verbose = verbose
    _stories_dir = stories_dir

    configure_logging(verbosity=verbose)


def _settings() -> Settings:
    settings = get_settings()
    if _stories_dir is not None:
        settings = settings.model_copy(update={"stories_dir": _stories_dir})
    return settings


def _catalog() -> StoryCatalog:
    return StoryCatalog(_settings().stories_dir)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]✗[/red] {message}")
    return typer.Exit(1)


# =============================================================================
# generate
# =============================================================================


def _report_failure(error: CodeStoryError) -> None:
    console.print()
    console.print(f"[red]✗[/red] Generation failed: {error.message}")
    if isinstance(error, GenerationFailedError):
        console.print(f"  Reason: [bold]{error.reason}[/bold]")
        if error.exit_code is not None:
            console.print(f"  Agent exit code: {error.exit_code}")
        console.print(f"  Intermediate files kept in: [cyan]{error.working_dir}[/cyan]")
        if error.stderr:
            console.print("  Agent stderr:")
            console.print(error.stderr, markup=False, highlight=False)


async def _run_generation(
    generator: StoryGenerator,
    query: str,
    repo: str | None,
) -> int:
    """Run one generation under a spinner; returns the process exit code."""
    loop = asyncio.get_running_loop()
    received: list[int] = []

    with console.status("Starting story generation...", spinner="dots") as status:

        def on_event(event: PipelineEvent) -> None:
            if event.type == PipelineEventType.STAGE_PROGRESS:
                status.update(f"{event.label} ({event.progress_percent}%)")

        task = asyncio.create_task(generator.generate(query, repo, on_event=on_event))

        def on_signal(signum: int) -> None:
            received.append(signum)
            task.cancel()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, on_signal, signum)
        try:
            result = await task
        except asyncio.CancelledError:
            signum = received[0] if received else signal.SIGINT
            console.print()
            console.print(f"[yellow]Interrupted ({signal.Signals(signum).name}); generation cancelled.[/yellow]")
            return EXIT_SIGTERM if signum == signal.SIGTERM else EXIT_SIGINT
        except CodeStoryError as e:
            _report_failure(e)
            return 1
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)

    story = result.story
    console.print(f"[green]✓[/green] Story generated: [bold]{story.title}[/bold]")
    console.print(f"  ID: [cyan]{story.id}[/cyan]")
    console.print(f"  Chapters: {len(story.chapters)}")
    console.print(f"  Saved to: [cyan]{result.story_path}[/cyan]")
    return 0


@app.command()
def generate(
    query: Annotated[str, typer.Argument(help="Question the story should answer.")],
    repo: Annotated[
        str | None,
        typer.Option("--repo", "-r", help="GitHub repository to narrate (user/repo or URL)."),
    ] = None,
) -> None:
    """Generate a story for QUERY about the current codebase or --repo."""
    settings = _settings()
    catalog = StoryCatalog(settings.stories_dir)
    generator = StoryGenerator(catalog, settings=settings)

    console.print(f"[dim]Generating story for:[/dim] {query}")
    if repo:
        console.print(f"[dim]Repository:[/dim] {repo}")

    code = asyncio.run(_run_generation(generator, query, repo))
    if code:
        raise typer.Exit(code)


# =============================================================================
# catalog commands
# =============================================================================


@app.command("list")
def list_stories() -> None:
    """List stories in the catalog, newest first."""
    try:
        manifest = _catalog().list_stories()
    except CodeStoryError as e:
        raise _fail(e.message) from e

    if not manifest.stories:
        console.print("[dim]No stories yet. Run [cyan]codestory generate[/cyan] to create one.[/dim]")
        return
    console.print()
    console.print(manifest_table(manifest))
    console.print()


def _chapter_index(chapter: int | None) -> int | None:
    return chapter - 1 if chapter is not None else None


def _display(story: Story, chapter: int | None, interactive: bool) -> None:
    if interactive:
        browse_story(console, story, lambda: console.input("> "), start=_chapter_index(chapter) or 0)
        return
    try:
        show_story(console, story, _chapter_index(chapter))
    except IndexError as e:
        raise _fail(str(e)) from e


ChapterOption = Annotated[
    int | None,
    typer.Option("--chapter", "-c", min=1, help="Show only this chapter (1-based)."),
]
InteractiveOption = Annotated[
    bool,
    typer.Option("--interactive", "-i", help="Page through chapters interactively."),
]


@app.command()
def show(
    story_id: Annotated[str, typer.Argument(help="Story ID.")],
    chapter: ChapterOption = None,
    interactive: InteractiveOption = False,
) -> None:
    """Show a story from the local catalog."""
    try:
        story = _catalog().get_story(story_id)
    except CodeStoryError as e:
        raise _fail(e.message) from e
    _display(story, chapter, interactive)


def _view_failure(error: CodeStoryError) -> typer.Exit:
    """Error view: what failed, and where to go from here. Nothing is rendered."""
    console.print(f"[red]✗[/red] {error.message}")
    console.print("  Retry, or run [bold]codestory list[/bold] to return to the catalog.")
    return typer.Exit(1)


async def _fetch_story(settings: Settings, url: str) -> Story:
    headers = {"Authorization": f"Bearer {settings.github_token}"} if settings.has_github_token() else None
    async with StoryFetcher(timeout=settings.viewer_timeout, headers=headers) as fetcher:
        return await fetcher.fetch_story(url)


async def _fetch_manifest_table(settings: Settings, url: str) -> Table:
    async with StoryFetcher(timeout=settings.viewer_timeout) as fetcher:
        manifest = await fetcher.fetch_manifest(url)
    return manifest_table(manifest, title=url)


@app.command()
def view(
    reference: Annotated[
        str | None,
        typer.Argument(help="Local story ID, story URL, GitHub blob URL or user/repo/<story-id>."),
    ] = None,
    url: Annotated[str | None, typer.Option("--url", help="Direct URL of a story document.")] = None,
    repo: Annotated[str | None, typer.Option("--repo", help="GitHub user/repo hosting stories/.")] = None,
    story: Annotated[str | None, typer.Option("--story", help="Story ID inside --repo.")] = None,
    manifest: Annotated[str | None, typer.Option("--manifest", help="Direct URL of a manifest.")] = None,
    chapter: ChapterOption = None,
    interactive: InteractiveOption = False,
) -> None:
    """View a story from the local catalog or a remote host.

    With --repo alone (or --manifest), lists the remote manifest instead.
    """
    settings = _settings()

    try:
        if reference and is_valid_story_id(reference) and StoryCatalog(settings.stories_dir).has_story(reference):
            _display(StoryCatalog(settings.stories_dir).get_story(reference), chapter, interactive)
            return

        story_url = resolve_story_url(url, repo, story, settings.github_raw_base)
        if story_url is None and reference:
            story_url = normalize_story_reference(reference, settings.github_raw_base)

        if story_url is None:
            manifest_url = resolve_manifest_url(manifest, repo, story, settings.github_raw_base)
            if manifest_url is None:
                raise _fail("Nothing to view. Give a story ID, --url, --repo [--story] or --manifest.")
            console.print(asyncio.run(_fetch_manifest_table(settings, manifest_url)))
            return

        loaded = asyncio.run(_fetch_story(settings, story_url))
    except CodeStoryError as e:
        raise _view_failure(e) from e

    _display(loaded, chapter, interactive)


@app.command()
def progress(
    generation_id: Annotated[str, typer.Argument(help="Generation ID.")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw report as JSON.")] = False,
) -> None:
    """Show progress of a generation from its working directory."""
    catalog = _catalog()
    if not is_valid_story_id(generation_id):
        raise _fail(f"Invalid generation ID: {generation_id}")
    report = probe(catalog.tmp_dir / generation_id)

    if as_json:
        typer.echo(json.dumps({**report.to_dict(), "percent": report.percent, "label": report.label}, indent=2))
        return

    if not report.files:
        console.print(f"[dim]No working directory for {generation_id}.[/dim]")
        return

    table = Table(title=f"Generation {generation_id}")
    table.add_column("File", style="cyan")
    table.add_column("Exists")
    table.add_column("Checkpoints")
    for name, status in report.files.items():
        exists = "[green]✓[/green]" if status.exists else "[dim]○[/dim]"
        marks = ", ".join(
            f"[green]{token}[/green]" if present else f"[dim]{token}[/dim]"
            for token, present in status.checkpoints.items()
        )
        table.add_row(name, exists, marks or "-")

    console.print()
    console.print(table)
    console.print(f"Stage {report.stage}/{report.total} ({report.percent}%): [bold]{report.label}[/bold]")


@app.command()
def reindex() -> None:
    """Rebuild the manifest from the stored story documents."""
    catalog = _catalog()
    catalog.ensure()
    manifest = catalog.rebuild_manifest()
    console.print(f"[green]✓[/green] Manifest rebuilt with {len(manifest.stories)} stories")


# =============================================================================
# server / tooling
# =============================================================================


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option("--port", help="Port.")] = None,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from codestory.api.main import create_app

    settings = _settings()
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level="debug" if _verbose >= 2 else "info",
    )


@app.command()
def optimize(
    goals: Annotated[Path, typer.Option("--goals", exists=True, dir_okay=False, help="Goals document.")],
    queries: Annotated[Path, typer.Option("--queries", exists=True, dir_okay=False, help="Queries document.")],
    results_dir: Annotated[
        Path, typer.Option("--results", help="Directory for per-iteration results.")
    ] = Path("optimization-results"),
    iterations: Annotated[int, typer.Option("--iterations", "-n", min=1, help="Iterations to run.")] = 5,
    per_iteration: Annotated[
        int, typer.Option("--per-iteration", min=1, help="Queries generated per iteration.")
    ] = 2,
    guidance_file: Annotated[
        Path | None, typer.Option("--guidance-file", help="File receiving the latest guidance.")
    ] = None,
) -> None:
    """Iteratively revise the authoring guidance against a goals document."""
    from codestory.agents import create_agent_runner
    from codestory.optimize import OptimizationError, PromptOptimizer, parse_queries

    settings = _settings()
    parsed = parse_queries(queries.read_text(encoding="utf-8"))
    console.print(f"Queries found: [bold]{len(parsed)}[/bold]")
    console.print(f"Iterations: {iterations}, queries per iteration: {per_iteration}")

    optimizer = PromptOptimizer(
        StoryGenerator(StoryCatalog(settings.stories_dir), settings=settings),
        create_agent_runner(settings),
        results_dir,
        goals.read_text(encoding="utf-8"),
        guidance_file=guidance_file or settings.guidance_file,
        queries_per_iteration=per_iteration,
        on_message=lambda message: console.print(f"[dim]{message}[/dim]"),
    )
    try:
        asyncio.run(optimizer.run(parsed, iterations))
    except OptimizationError as e:
        raise _fail(f"Optimization failed: {e.message}") from e

    console.print()
    console.print(f"[green]✓[/green] Optimization complete. Results in [cyan]{results_dir}[/cyan]")
    console.print(f"  Latest guidance: [cyan]{optimizer.guidance_file}[/cyan]")
    console.print("  Point GUIDANCE_FILE at it to use it for generation.")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"codestory v{__version__}")
    console.print(f"Python {sys.version.split()[0]}")


if __name__ == "__main__":
    app()
