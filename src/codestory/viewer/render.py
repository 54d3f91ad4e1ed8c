"""Terminal rendering of stories with rich.

A chapter is shown as a header, one syntax-highlighted panel per snippet
(numbered from the snippet's start line) and the markdown explanation.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import PurePosixPath

from rich.console import Console, Group, RenderableType
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from codestory.models import Chapter, Snippet, Story, StoryManifest

CODE_THEME = "monokai"

EXT_TO_LEXER: dict[str, str] = {
    ".js": "javascript",
    ".jsx": "jsx",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".py": "python",
    ".rs": "rust",
    ".go": "go",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".css": "css",
    ".scss": "scss",
    ".less": "less",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".sql": "sql",
    ".sh": "bash",
    ".bash": "bash",
    ".html": "html",
    ".xml": "xml",
    ".svg": "xml",
    ".diff": "diff",
    ".graphql": "graphql",
    ".gql": "graphql",
    ".coffee": "coffeescript",
    ".ml": "ocaml",
    ".mli": "ocaml",
}


def lexer_for(file_path: str) -> str:
    """Pygments lexer name for a snippet's file."""
    path = PurePosixPath(file_path)
    if not path.suffix:
        if path.name in ("Makefile", "makefile"):
            return "make"
        if path.name == "Dockerfile":
            return "docker"
        return "text"
    return EXT_TO_LEXER.get(path.suffix.lower(), "text")


def render_snippet(snippet: Snippet) -> Panel:
    code = Syntax(
        snippet.content,
        lexer_for(snippet.file_path),
        theme=CODE_THEME,
        line_numbers=True,
        start_line=snippet.start_line,
        word_wrap=False,
    )
    return Panel(
        code,
        title=f"[cyan]{snippet.file_path}[/cyan]",
        subtitle=f"L{snippet.start_line}-{snippet.end_line}",
        title_align="left",
        subtitle_align="right",
    )


def render_chapter(chapter: Chapter, index: int, total: int) -> RenderableType:
    """One chapter: header, code panels, explanation."""
    parts: list[RenderableType] = [
        Rule(f"[bold]{chapter.label}[/bold] [dim]({index + 1}/{total})[/dim]"),
    ]
    if chapter.snippets:
        parts.extend(render_snippet(snippet) for snippet in chapter.snippets)
    parts.append(Markdown(chapter.explanation))
    return Group(*parts)


def render_sidebar(story: Story, current: int | None = None) -> Table:
    """Chapter list with the current chapter highlighted."""
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("#", style="dim", justify="right")
    table.add_column("Chapter")
    for i, chapter in enumerate(story.chapters):
        label = Text(chapter.label, style="bold reverse" if i == current else "")
        table.add_row(str(i + 1), label)
    return table


def render_header(story: Story) -> Panel:
    commit = story.commit_hash[:7]
    source = f"{story.repo} @ {commit}" if story.repo else commit
    body = Group(
        Text(story.query, style="italic"),
        Text(source, style="dim"),
    )
    return Panel(body, title=f"[bold]{story.title}[/bold]", title_align="left")


def show_story(console: Console, story: Story, chapter: int | None = None) -> None:
    """Print a story, or a single chapter of it (0-based).

    Raises:
        IndexError: If ``chapter`` is out of range
    """
    total = len(story.chapters)
    if chapter is not None and not 0 <= chapter < total:
        raise IndexError(f"Chapter {chapter + 1} out of range (story has {total} chapters)")

    console.print(render_header(story))
    console.print(render_sidebar(story, chapter))
    console.print()
    indices = [chapter] if chapter is not None else range(total)
    for i in indices:
        console.print(render_chapter(story.chapters[i], i, total))
        console.print()


def browse_story(
    console: Console,
    story: Story,
    read_command: Callable[[], str],
    start: int = 0,
) -> None:
    """Page through chapters interactively.

    Commands: ``n``/``l`` next, ``p``/``h`` previous, ``g`` first,
    ``G`` last, a chapter number to jump, ``q`` to quit. Reading stops on
    EOF.
    """
    total = len(story.chapters)
    current = max(0, min(start, total - 1))
    console.print(render_header(story))
    while True:
        console.print(render_sidebar(story, current))
        console.print(render_chapter(story.chapters[current], current, total))
        console.print("[dim]n/p: next/previous  1-9: jump  g/G: first/last  q: quit[/dim]")
        try:
            command = read_command().strip()
        except EOFError:
            return
        if command in ("q", "quit"):
            return
        if command in ("n", "l", ""):
            current = min(total - 1, current + 1)
        elif command in ("p", "h"):
            current = max(0, current - 1)
        elif command == "g":
            current = 0
        elif command == "G":
            current = total - 1
        elif command.isdigit() and 1 <= int(command) <= total:
            current = int(command) - 1
        else:
            console.print(f"[yellow]Unknown command: {command}[/yellow]")


def manifest_table(manifest: StoryManifest, title: str = "Stories") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Commit", style="dim")
    table.add_column("Created", style="dim")
    for summary in manifest.stories:
        table.add_row(summary.id, summary.title, summary.commit_hash[:7], summary.created_at)
    return table
