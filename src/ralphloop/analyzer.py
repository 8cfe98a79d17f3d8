"""Failure analysis for the meta-loop.

The analyzer reuses the builder's agent in an analysis role. Its output is
advisory free text; nothing here parses structure out of it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .agent_runner import AgentRunner
from .progress import tail_lines
from .prompts import render_additions_prompt, render_analysis_prompt

logger = logging.getLogger(__name__)

# Lines matched when collecting errors for the analysis prompt
ERROR_LINE_PATTERN = re.compile(r"error|fail|panic", re.IGNORECASE)
# Lines counted when deciding whether the model is struggling
ERROR_COUNT_PATTERN = re.compile(r"error|fail", re.IGNORECASE)

ERROR_SCAN_WINDOW = 200
ERROR_LINE_LIMIT = 50
ERROR_COUNT_WINDOW = 500
PROGRESS_WINDOW = 100


def recent_error_lines(
    log_text: str,
    window: int = ERROR_SCAN_WINDOW,
    limit: int = ERROR_LINE_LIMIT,
) -> list[str]:
    """Collect error-looking lines from the end of the session log.

    Args:
        log_text: Session log content.
        window: How many trailing lines to scan.
        limit: Maximum lines returned (the most recent ones).

    Returns:
        Matching lines in log order.
    """
    matches = [line for line in tail_lines(log_text, window) if ERROR_LINE_PATTERN.search(line)]
    return matches[-limit:] if limit > 0 else []


def count_error_lines(log_text: str, window: int = ERROR_COUNT_WINDOW) -> int:
    """Count lines mentioning errors or failures near the end of the log."""
    return sum(1 for line in tail_lines(log_text, window) if ERROR_COUNT_PATTERN.search(line))


def should_switch_model(
    iterations: int,
    recent_errors: int,
    min_iterations: int = 20,
    min_errors: int = 50,
) -> bool:
    """Decide whether the active model is struggling.

    Both thresholds must be strictly exceeded.
    """
    return iterations > min_iterations and recent_errors > min_errors


def is_substantial(text: Optional[str], min_lines: int = 5) -> bool:
    """Check that generated text has more than `min_lines` lines."""
    if not text or not text.strip():
        return False
    return len(text.splitlines()) > min_lines


@dataclass
class AnalysisResult:
    """Result from an analysis invocation."""

    success: bool
    content: str = ""
    error: Optional[str] = None


class FailureAnalyzer:
    """Summarizes recent builder activity into learnings."""

    def __init__(
        self,
        runner: AgentRunner,
        additions_min_lines: int = 5,
        cwd: Optional[Path] = None,
    ):
        """Initialize the analyzer.

        Args:
            runner: Agent runner used in the analysis role.
            additions_min_lines: Regenerated additions must exceed this many lines.
            cwd: Working directory for the agent.
        """
        self.runner = runner
        self.additions_min_lines = additions_min_lines
        self.cwd = cwd

    def analyze(self, recent_progress: str, recent_errors: list[str]) -> AnalysisResult:
        """Produce a narrative of failure patterns.

        Args:
            recent_progress: Tail of the progress log.
            recent_errors: Recent error lines from the session log.

        Returns:
            AnalysisResult with the narrative text.
        """
        logger.info("Analyzing builder session...")
        prompt = render_analysis_prompt(recent_progress, recent_errors)
        result = self.runner.run(prompt, cwd=self.cwd)
        if not result.success and not result.output.strip():
            logger.warning(f"Analysis failed: {result.error}")
            return AnalysisResult(success=False, error=result.error)
        return AnalysisResult(success=True, content=result.output)

    def regenerate_additions(self, learnings: str) -> Optional[str]:
        """Generate new prompt additions from the learnings document.

        Returns:
            The new additions, or None when the output is too small to use.
        """
        logger.info("Updating prompt additions...")
        prompt = render_additions_prompt(learnings)
        result = self.runner.run(prompt, cwd=self.cwd)
        if not result.success:
            logger.warning(f"Additions generation failed: {result.error}")
            return None
        if not is_substantial(result.output, self.additions_min_lines):
            logger.info("No significant additions generated")
            return None
        return result.output


class MockFailureAnalyzer(FailureAnalyzer):
    """Mock analyzer returning fixed text."""

    def __init__(self, analysis: str = "## Patterns That Fail\n- mock", additions: Optional[str] = None):
        self.analysis = analysis
        self.additions = additions
        self.additions_min_lines = 5
        self.analyze_calls = 0
        self.regenerate_calls = 0

    def analyze(self, recent_progress: str, recent_errors: list[str]) -> AnalysisResult:
        self.analyze_calls += 1
        return AnalysisResult(success=True, content=self.analysis)

    def regenerate_additions(self, learnings: str) -> Optional[str]:
        self.regenerate_calls += 1
        if is_substantial(self.additions, self.additions_min_lines):
            return self.additions
        return None
