"""Prompt composition for the builder and the meta-loop analyzer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from jinja2 import Template

logger = logging.getLogger(__name__)

SECTION_RULE = "---"
ADDITIONS_HEADING = "## Additional Context (from meta-loop)"
LEARNINGS_HEADING = "## Learnings (from previous attempts)"


ANALYSIS_PROMPT_TEMPLATE = Template(
    """Analyze the builder's session log and progress. Identify:

1. Repeated failures - same error multiple times
2. Patterns that worked - approaches that made progress
3. Patterns that failed - approaches that wasted iterations
4. Missing tools - things the builder needed but didn't have
5. Model limitations - tasks the model struggled with

Output as structured sections for LEARNINGS.md

Be concise. Only note significant patterns.

## Recent Progress:
{{ progress if progress else "No progress yet" }}

## Recent Errors (last 200 lines of log):
{% if errors %}{% for line in errors %}{{ line }}
{% endfor %}{% else %}No errors found
{% endif %}""",
    keep_trailing_newline=True,
)


ADDITIONS_PROMPT_TEMPLATE = Template(
    """Based on the LEARNINGS.md file, generate concise additions to help the builder.

Format as a markdown section that will be appended to the main prompt.
Focus on:
- Specific "do this" / "don't do this" rules
- Workarounds for known issues
- Helpful commands or patterns

Keep it under {{ max_lines }} lines. Be direct.

## Current Learnings:
{{ learnings }}
""",
    keep_trailing_newline=True,
)


def _section(heading: str, body: str) -> str:
    return f"\n{SECTION_RULE}\n{heading}\n\n{body}"


def _present(text: Optional[str]) -> bool:
    return text is not None and text.strip() != ""


def compose(
    base: str,
    additions: Optional[str] = None,
    learnings: Optional[str] = None,
) -> str:
    """Assemble the effective builder prompt.

    Order is fixed: base task, prompt additions, learnings. Each optional
    section is preceded by a horizontal rule and a heading; missing or blank
    sections are left out entirely.

    Args:
        base: The base task prompt.
        additions: Optional prompt additions from the meta-loop.
        learnings: Optional accumulated learnings.

    Returns:
        The effective prompt text.
    """
    parts = [base if base.endswith("\n") else base + "\n"]
    if _present(additions):
        parts.append(_section(ADDITIONS_HEADING, additions))
    if _present(learnings):
        parts.append(_section(LEARNINGS_HEADING, learnings))
    return "".join(parts)


@dataclass
class PromptSources:
    """File locations the effective prompt is built from.

    Files are read on every call to compose() so edits between iterations
    take effect on the next one.
    """

    prompt_file: Path
    additions_file: Optional[Path] = None
    learnings_file: Optional[Path] = None

    @staticmethod
    def _read_optional(path: Optional[Path]) -> Optional[str]:
        if path is None or not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def compose(self) -> str:
        """Read the current sources and compose the effective prompt.

        Raises:
            FileNotFoundError: If the base prompt file is missing.
        """
        base = self.prompt_file.read_text(encoding="utf-8")
        logger.debug(f"Composing prompt from {self.prompt_file}")
        return compose(
            base,
            additions=self._read_optional(self.additions_file),
            learnings=self._read_optional(self.learnings_file),
        )


def render_analysis_prompt(progress: str, errors: list[str]) -> str:
    """Render the failure analysis prompt.

    Args:
        progress: Recent progress log text.
        errors: Recent error lines from the session log.

    Returns:
        Prompt text for the analysis invocation.
    """
    return ANALYSIS_PROMPT_TEMPLATE.render(progress=progress.strip(), errors=errors)


def render_additions_prompt(learnings: str, max_lines: int = 50) -> str:
    """Render the prompt asking for regenerated prompt additions."""
    return ADDITIONS_PROMPT_TEMPLATE.render(learnings=learnings, max_lines=max_lines)
