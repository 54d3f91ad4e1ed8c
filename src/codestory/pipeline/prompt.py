"""Prompt builder for the story generation agent.

The prompt is a contract. Its sections, in order:

1. Output contract - the JSON shape of the final story document
2. Fixed values the agent copies verbatim (id, commit hash, query, repo,
   creation timestamp)
3. Protocol rules - checkpoint ordering, one stage at a time
4. One block per stage, naming the absolute output path and the exact
   checkpoint line to append
5. Authoring guidance - tunable wording about pacing, snippet budget and
   explanation length; may change freely without touching the protocol

Everything except the guidance and the embedded values is fixed text, so
for fixed inputs the contract sections are identical across calls.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from .stages import STAGES, Stage

OUTPUT_SCHEMA = """{
  "id": "string (UUID)",
  "title": "string",
  "query": "string",
  "repo": "string or null (GitHub user/repo if from remote)",
  "commitHash": "string",
  "createdAt": "string (ISO 8601)",
  "chapters": [
    {
      "id": "string (e.g., chapter-0)",
      "label": "string (2-4 words for sidebar)",
      "snippets": [
        {
          "filePath": "string (relative path)",
          "startLine": "number (1-indexed)",
          "endLine": "number (1-indexed, inclusive, >= startLine)",
          "content": "string (actual code)"
        }
      ],
      "explanation": "string (markdown)"
    }
  ]
}"""

PROTOCOL_RULES = """1. Complete each stage fully before starting the next one.
2. Before starting a stage, read the previous stage's file and verify that its
   checkpoint line is present. If it is missing, finish the previous stage first.
3. Never work on more than one stage at a time and never skip a stage.
4. Checkpoint lines are appended, never replaced. When two stages write the same
   file, the later stage keeps the earlier checkpoint line and adds its own.
5. Write each checkpoint line exactly as given, on its own line, at the end of
   the file."""

# Structural requirements per stage, parallel to STAGES.
STAGE_INSTRUCTIONS: tuple[str, ...] = (
    """Analyze the codebase to understand the code relevant to the query.
Use Glob to map the project structure, then Read the important files.

Structure your notes as:

## Relevant Files
- Each file with a one-line description of its role

## Key Components
- Important classes, functions and constants, their responsibilities and
  relationships

## Flow Analysis
- How data and control flow through the system for this query

## Entry Points
- Where the flow starts and what triggers it

## Design Decisions
- Interesting "why" decisions, not just "what\"""",
    """Design the chapter sequence of the story.

Structure the outline as:

## Story Title
A clear, descriptive title

## Overview
2-3 sentences on what the story covers and why it matters

## Chapter Sequence
### Chapter 1: [Short Label]
- **Teaching point**: the single insight of this chapter
- **What to show**: which file(s) and roughly which code
- **Transition**: how it leads into the next chapter

Continue for every chapter. Labels are 2-4 words.""",
    """Critically review the outline in place and revise it where needed.

Check:
1. Does each chapter have exactly one clear teaching point?
2. Are technical terms introduced before they are used?
3. Could a newcomer follow the progression?
4. Are any chapters redundant?
5. Does the outline cover every technology, concept or component the query
   names?

Add a section at the end of the file:

## Review Notes
- What changed and why""",
    """For each chapter, select the exact code to show.

Structure as:

### Chapter N: [Label]
**Snippet 1:**
- File: path/to/file (relative to the codebase root)
- Lines: start-end (1-indexed, inclusive)
- Reason: why this range

Verify every line range against the actual file.""",
    """Read the code for every snippet selected in the previous stage and write the
explanation for each chapter in markdown. Then assemble the final story
document.

The document must be valid JSON matching the output contract exactly, using
the fixed values above. Writing this file is your final action; the
generation is finished once it exists.""",
)

DEFAULT_GUIDANCE = """You are writing for a reader who wants insight, not just information.
The story should read like a friendly, knowledgeable colleague walking someone
through the code.

Structure:
- Plan 5-30 chapters depending on complexity; each chapter has ONE teaching point.
- Start with an overview chapter with no snippets that orients the reader and
  briefly defines specialized terms from the query.
- End with a summary chapter with no snippets that recaps the key insights and
  leaves the reader with a clear mental model.
- Build from foundations to compositions. When the story moves between phases
  or subsystems, say why in the preceding chapter.
- If the relevant code spans several files, visit at least 2-3 of them.

Snippets:
- 20-70 lines per chapter across all snippets; never more than 80. Split
  chapters that need more.
- 1-3 snippets per chapter, each at least 3 lines. Quote single lines in the
  explanation instead of making 1-line snippets.
- Show complete logical units where possible. Include the class declaration
  when showing a constructor.
- Debug/logging lines, commented-out code and verbose error handling stay
  under ~10% of shown lines. End snippets before trailing debug blocks, or use
  several smaller snippets to skip over them.
- `content` must match the source exactly and line numbers must be accurate.

Explanations:
- Vary length with complexity: 60-100 words for simple code, 120-180 for
  moderate, 180-250 for complex; at most 300. The longest non-overview
  explanation should be at least twice the shortest.
- Always say WHY, not just WHAT, even in short explanations.
- Reference specific lines ("Lines 10-15 handle...") consistently.
- Vary chapter openings; avoid starting several chapters with "This is...".
- When skipping code between snippets of the same file, say what was skipped.

Before writing the final document, check: bookend chapters have no snippets,
no chapter exceeds 80 snippet lines, and every item named in the query is
covered."""


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _stage_block(
    number: int,
    stage: Stage,
    previous: Stage | None,
    instructions: str,
    working_dir: Path,
) -> str:
    path = working_dir / stage.expected_file
    lines = [f"### Stage {number}: {stage.label}", ""]

    if previous is not None and previous.checkpoint_token:
        lines.append(
            f"First read {working_dir / previous.expected_file} and verify it contains "
            f"{previous.checkpoint_token}."
        )
        lines.append("")

    lines.append(instructions)
    lines.append("")
    lines.append(f"Write to: {path}")

    if stage.checkpoint_line:
        lines.append("")
        lines.append(f"When this stage is complete, append exactly this line to {path}:")
        lines.append(stage.checkpoint_line)

    return "\n".join(lines)


def build_prompt(
    query: str,
    working_dir: Path | str,
    commit_hash: str,
    generation_id: str,
    repo: str | None = None,
    *,
    created_at: str | None = None,
    guidance: str | None = None,
    stages: tuple[Stage, ...] = STAGES,
) -> str:
    """Build the complete instruction text sent to the agent.

    Args:
        query: The user's question about the codebase
        working_dir: Generation working directory (embedded as absolute paths)
        commit_hash: Commit of the narrated source tree
        generation_id: UUID the agent must use as the story id
        repo: External ``user/repo`` reference, or None for the local tree
        created_at: Creation timestamp; defaults to now (UTC)
        guidance: Authoring guidance; defaults to ``DEFAULT_GUIDANCE``
        stages: Stage registry

    Returns:
        The prompt text
    """
    if len(stages) != len(STAGE_INSTRUCTIONS):
        raise ValueError(
            f"Stage registry has {len(stages)} stages but {len(STAGE_INSTRUCTIONS)} instruction blocks"
        )

    working_dir = Path(working_dir).absolute()
    created_at = created_at or _utc_timestamp()
    guidance = guidance if guidance is not None else DEFAULT_GUIDANCE
    final_path = working_dir / stages[-1].expected_file

    fixed_values = "\n".join(
        [
            f"- id: {json.dumps(generation_id)}",
            f"- commitHash: {json.dumps(commit_hash)}",
            f"- query: {json.dumps(query)}",
            f"- repo: {json.dumps(repo)}",
            f"- createdAt: {json.dumps(created_at)}",
        ]
    )

    stage_blocks = []
    for index, (stage, instructions) in enumerate(zip(stages, STAGE_INSTRUCTIONS)):
        previous = stages[index - 1] if index > 0 else None
        stage_blocks.append(_stage_block(index + 1, stage, previous, instructions, working_dir))

    sections = [
        'You are an expert code narrator. Your job is to create a "code story": a guided,\n'
        "chapter-by-chapter tour of a codebase that answers the user's query.",
        f"The user's query is: {json.dumps(query)}",
        f"## Output Contract\n\nThe final story document is a single JSON object matching this schema:\n{OUTPUT_SCHEMA}",
        f"## Fixed Values\n\nCopy these values verbatim into the story document:\n{fixed_values}",
        f"## Protocol\n\nWorking directory for this generation: {working_dir}/\n\n{PROTOCOL_RULES}",
        f"## Pipeline\n\nFollow these {len(stages)} stages in order.\n\n" + "\n\n".join(stage_blocks),
        f"## Authoring Guidance\n\n{guidance}",
        f"## Output\n\nWrite the final JSON document to: {final_path}",
    ]
    return "\n\n".join(sections) + "\n"
