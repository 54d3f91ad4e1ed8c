"""Offline authoring-guidance optimizer.

Runs iterative cycles against a fixed set of queries:

1. Generate stories with the current guidance
2. Summarize the results and ask the agent for a reflection measured
   against a goals document
3. Ask the agent for revised guidance and use it for the next iteration

The optimizer never edits source code. Its output is a plain-text guidance
file that the prompt builder reads through the ``guidance_file`` setting.

Layout of ``results_dir``::

    iteration-1/
        guidance_used.md
        reflections.md
        guidance.md
        story_<query>.json
        story_<query>_log.txt     # failed generations only
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from codestory.agents import AgentRunner
from codestory.core.errors import CodeStoryError, GenerationFailedError
from codestory.models import Story
from codestory.pipeline import StoryGenerator
from codestory.pipeline.prompt import DEFAULT_GUIDANCE
from codestory.services.catalog import atomic_write_text

logger = logging.getLogger("codestory.optimize")

MIN_RESPONSE_CHARS = 50
MAX_PREVIOUS_REFLECTIONS = 3
QUERY_HEADING = "## Query"
REPO_LINE_PATTERN = re.compile(r"^repo:\s*(.+)", re.IGNORECASE)


class OptimizationError(CodeStoryError):
    """An optimization iteration could not complete."""

    code = "optimization_failed"


@dataclass(frozen=True)
class OptimizationQuery:
    query: str
    repo: str | None = None


@dataclass
class QueryResult:
    """Outcome of one generation inside an iteration."""

    query: OptimizationQuery
    story: Story | None = None
    error: str | None = None
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.story is not None


@dataclass
class IterationResult:
    iteration: int
    directory: Path
    results: list[QueryResult] = field(default_factory=list)
    reflections: str = ""
    guidance: str = ""


def parse_queries(markdown: str) -> list[OptimizationQuery]:
    """Parse the queries document.

    Everything before the first ``## Query`` heading is ignored. After it,
    each non-empty line that is not a heading is a query; a ``repo: x/y``
    line attaches a repository to the query that follows it.
    """
    queries: list[OptimizationQuery] = []
    current_repo: str | None = None
    in_queries = False
    for line in markdown.splitlines():
        if line.startswith(QUERY_HEADING):
            in_queries = True
            continue
        if not in_queries:
            continue
        repo_match = REPO_LINE_PATTERN.match(line)
        if repo_match:
            current_repo = repo_match.group(1).strip()
            continue
        text = line.strip()
        if text and not text.startswith("#"):
            queries.append(OptimizationQuery(query=text, repo=current_repo))
            current_repo = None
    return queries


def safe_name(query: str) -> str:
    """File-name fragment for a query."""
    return re.sub(r"[^a-zA-Z0-9]", "_", query[:40])


def summarize_results(results: list[QueryResult]) -> str:
    """Markdown summary of an iteration's stories for the evaluator."""
    sections = []
    for i, result in enumerate(results, start=1):
        header = f'### Query {i}: "{result.query.query}"'
        if not result.success:
            stderr = result.stderr[:300] or "none"
            sections.append(
                f"{header}\n**FAILED** - {result.error or 'no story produced'}\nstderr: {stderr}"
            )
            continue

        story = result.story
        chapters = "\n".join(
            f"- **{chapter.label}**: {len(chapter.snippets)} snippet(s), "
            f"{sum(s.line_count for s in chapter.snippets)} lines, "
            f"explanation length: {len(chapter.explanation)} chars"
            for chapter in story.chapters
        )
        sample = story.chapters[1].explanation[:500] if len(story.chapters) > 1 else "N/A"
        sections.append(
            f"{header}\n**Title**: {story.title}\n**Chapters**: {len(story.chapters)}\n"
            f"{chapters}\n\n**Sample explanation (Chapter 2)**:\n{sample}"
        )
    return "\n\n---\n\n".join(sections)


def build_reflection_prompt(
    goals: str,
    guidance: str,
    summaries: str,
    previous_reflections: str = "",
) -> str:
    previous = f"## Reflections From Previous Iterations\n{previous_reflections}\n\n" if previous_reflections else ""
    return f"""You are a prompt engineer optimizing a code story generation tool.

## Overall Goals (North Star)
{goals}

## Current Authoring Guidance
{guidance}

{previous}## Stories Generated This Iteration
{summaries}

## Your Task

Write a detailed reflection for this iteration. Structure it as:

### What Worked Well
- Specific things the current guidance does well (cite examples from the stories)

### What Needs Improvement
- Specific problems observed (cite examples from the stories)
- How these relate to the overall goals

### Patterns Across Queries
- Common strengths or weaknesses across different query types

### Specific Guidance Changes to Try Next
- Concrete, actionable changes to the authoring guidance
- For each change, explain why it should help

### Priority Score (1-10)
Rate how close the current output is to the overall goals. 10 = perfect.

Be honest and specific. Vague feedback like "make it better" is not useful."""


def build_revision_prompt(
    goals: str,
    guidance: str,
    reflections: str,
    previous_reflections: str = "",
) -> str:
    previous = (
        f"## Previous Iteration Reflections (for context)\n{previous_reflections}\n\n"
        if previous_reflections
        else ""
    )
    return f"""You are a prompt engineer. Based on the reflections below, write an improved version of the authoring guidance.

## Overall Goals
{goals}

## Current Reflections
{reflections}

{previous}## Current Authoring Guidance
{guidance}

## Your Task

Output ONLY the improved guidance text. No commentary before or after.
The guidance covers story structure, snippet selection and explanation
style. It must not change file names, checkpoint markers or the JSON
schema; those are fixed by the tool.

Focus your changes on:
1. The specific improvements identified in the reflections
2. Maintaining everything that works well
3. Small, targeted changes (don't rewrite from scratch)"""


class PromptOptimizer:
    """Iteratively revises authoring guidance.

    Args:
        generator: Generator whose ``guidance`` is revised between iterations
        runner: Agent runner used for the reflection and revision prompts
        results_dir: Directory receiving one subdirectory per iteration
        goals: Goals document the stories are measured against
        guidance_file: File updated with the latest guidance after each iteration
        queries_per_iteration: Number of queries generated per iteration
    """

    def __init__(
        self,
        generator: StoryGenerator,
        runner: AgentRunner,
        results_dir: Path,
        goals: str,
        guidance_file: Path | None = None,
        queries_per_iteration: int = 2,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        self.generator = generator
        self.runner = runner
        self.results_dir = Path(results_dir)
        self.goals = goals
        self.guidance_file = guidance_file or self.results_dir / "guidance.md"
        self.queries_per_iteration = queries_per_iteration
        self.on_message = on_message

    @property
    def guidance(self) -> str:
        return self.generator.guidance or DEFAULT_GUIDANCE

    def _say(self, message: str) -> None:
        logger.info(message)
        if self.on_message:
            self.on_message(message)

    def previous_reflections(self, iteration: int) -> str:
        """Reflections of up to three preceding iterations, oldest first."""
        parts = []
        for i in range(max(1, iteration - MAX_PREVIOUS_REFLECTIONS), iteration):
            path = self.results_dir / f"iteration-{i}" / "reflections.md"
            if path.is_file():
                parts.append(f"### Iteration {i} Reflections\n{path.read_text(encoding='utf-8')}")
        return "\n\n---\n\n".join(parts)

    async def ask(self, prompt: str, scratch_dir: Path, what: str) -> str:
        """Run the agent on a text-only prompt and return its answer.

        Raises:
            OptimizationError: If the agent fails or answers too briefly
        """
        outcome = await self.runner.run(prompt, scratch_dir, scratch_dir)
        if outcome.exit_code not in (0, None):
            raise OptimizationError(
                f"Agent exited with code {outcome.exit_code} while writing {what}. "
                f"stderr: {outcome.stderr_excerpt() or 'none'}"
            )
        text = outcome.stdout.strip()
        if len(text) < MIN_RESPONSE_CHARS:
            raise OptimizationError(
                f"{what.capitalize()} output is empty or too short ({len(text)} chars)",
                details={"length": len(text)},
            )
        return text

    async def generate_all(self, queries: list[OptimizationQuery], directory: Path) -> list[QueryResult]:
        results = []
        for item in queries[: self.queries_per_iteration]:
            label = f"{item.query[:60]}" + (f" (repo: {item.repo})" if item.repo else "")
            self._say(f"  Generating: {label}")
            name = safe_name(item.query)
            try:
                generated = await self.generator.generate(item.query, item.repo)
            except CodeStoryError as e:
                failed = isinstance(e, GenerationFailedError)
                stderr = e.stderr if failed else ""
                reason = e.reason if failed else e.code
                result = QueryResult(query=item, error=e.message, stderr=stderr)
                atomic_write_text(directory / f"story_{name}.json", json.dumps({"error": e.message}, indent=2))
                atomic_write_text(
                    directory / f"story_{name}_log.txt",
                    f"REASON: {reason}\n\n--- ERROR ---\n{e.message}\n\n--- STDERR ---\n{stderr}",
                )
            else:
                result = QueryResult(query=item, story=generated.story)
                atomic_write_text(
                    directory / f"story_{name}.json",
                    json.dumps(generated.story.to_document(), indent=2, ensure_ascii=False),
                )
            results.append(result)
        return results

    async def run_iteration(self, iteration: int, queries: list[OptimizationQuery]) -> IterationResult:
        directory = self.results_dir / f"iteration-{iteration}"
        directory.mkdir(parents=True, exist_ok=True)
        outcome = IterationResult(iteration=iteration, directory=directory)

        guidance = self.guidance
        atomic_write_text(directory / "guidance_used.md", guidance)

        self._say("Phase 1: Generating stories with current guidance...")
        outcome.results = await self.generate_all(queries, directory)
        if not any(result.success for result in outcome.results):
            raise OptimizationError(
                f"Iteration {iteration}: all {len(outcome.results)} story generations failed. "
                "Cannot proceed with evaluation.",
                details={"iteration": iteration},
            )

        self._say("Phase 2: Evaluating results and writing reflections...")
        previous = self.previous_reflections(iteration)
        summaries = summarize_results(outcome.results)
        outcome.reflections = await self.ask(
            build_reflection_prompt(self.goals, guidance, summaries, previous),
            directory,
            "reflections",
        )
        atomic_write_text(directory / "reflections.md", outcome.reflections)

        self._say("Phase 3: Revising guidance...")
        outcome.guidance = await self.ask(
            build_revision_prompt(self.goals, guidance, outcome.reflections, previous),
            directory,
            "revised guidance",
        )
        atomic_write_text(directory / "guidance.md", outcome.guidance)
        atomic_write_text(self.guidance_file, outcome.guidance)
        self.generator.guidance = outcome.guidance

        self._say(f"Iteration {iteration} complete.")
        return outcome

    async def run(self, queries: list[OptimizationQuery], iterations: int = 5) -> list[IterationResult]:
        """Run ``iterations`` cycles; stops at the first failing iteration.

        Raises:
            OptimizationError: If there are fewer queries than one iteration
                needs, or an iteration fails
        """
        if not queries:
            raise OptimizationError("No queries parsed. Check the queries file format.")
        if len(queries) < self.queries_per_iteration:
            raise OptimizationError(
                f"Only {len(queries)} queries parsed, but {self.queries_per_iteration} are needed "
                "per iteration. Add more queries or lower the per-iteration count."
            )

        self.results_dir.mkdir(parents=True, exist_ok=True)
        atomic_write_text(self.results_dir / "guidance.original.md", self.guidance)

        completed = []
        for iteration in range(1, iterations + 1):
            self._say(f"Iteration {iteration} / {iterations}")
            completed.append(await self.run_iteration(iteration, queries))
        return completed
