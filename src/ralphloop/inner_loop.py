"""Inner build loop.

Runs bounded iterations of: snapshot, compose prompt, invoke agent, append
the transcript, record progress, check for completion. Failures inside an
iteration are logged and the loop moves on; only a completion signal or
running out of iterations ends a run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from .agent_runner import AgentResult, AgentRunner
from .completion import CompletionStatus, completion_token, is_satisfied, parse_status
from .config import Config
from .progress import IterationRecord, ProgressLog, Transcript
from .prompts import PromptSources
from .snapshot import SnapshotStore, format_change_listing

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    """Terminal states of an inner run."""

    COMPLETE = "complete"
    EXHAUSTED = "exhausted"


@dataclass
class InnerLoopResult:
    """Outcome of one inner run."""

    state: LoopState
    iterations: int
    status: CompletionStatus
    records: list[IterationRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state is LoopState.COMPLETE

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class InnerLoop:
    """Bounded iteration scheduler."""

    def __init__(
        self,
        sources: PromptSources,
        runner: AgentRunner,
        snapshots: SnapshotStore,
        progress: ProgressLog,
        transcript: Transcript,
        max_iterations: int = 500,
        target_phase: Union[int, str] = 1,
        iteration_delay: float = 2.0,
        workspace: Optional[Path] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the inner loop.

        Args:
            sources: Prompt files composed fresh each iteration.
            runner: Agent invocation.
            snapshots: Workspace snapshot store.
            progress: Progress log for this run.
            transcript: Cumulative session transcript.
            max_iterations: Upper bound on iterations.
            target_phase: Phase whose token ends the run.
            iteration_delay: Seconds between iterations.
            workspace: Working directory for the agent.
            sleep: Delay function.
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.sources = sources
        self.runner = runner
        self.snapshots = snapshots
        self.progress = progress
        self.transcript = transcript
        self.max_iterations = max_iterations
        self.target_phase = target_phase
        self.token = completion_token(target_phase)
        self.iteration_delay = iteration_delay
        self.workspace = workspace
        self.sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: Config,
        runner: Optional[AgentRunner] = None,
        snapshots: Optional[SnapshotStore] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> InnerLoop:
        """Build an inner loop from configuration."""
        return cls(
            sources=PromptSources(
                prompt_file=config.prompt_path,
                additions_file=config.additions_path,
                learnings_file=config.learnings_path,
            ),
            runner=runner or AgentRunner(config.loop.agent_command, timeout=config.loop.agent_timeout),
            snapshots=snapshots or SnapshotStore(config.workspace),
            progress=ProgressLog(config.progress_path),
            transcript=Transcript(config.transcript_path),
            max_iterations=config.loop.max_iterations,
            target_phase=config.loop.target_phase,
            iteration_delay=config.loop.iteration_delay,
            workspace=config.workspace,
            sleep=sleep,
        )

    def _invoke_agent(self) -> AgentResult:
        try:
            prompt = self.sources.compose()
        except (OSError, UnicodeDecodeError) as exc:
            logger.error(f"Could not compose prompt: {exc}")
            return AgentResult(success=False, error=f"Could not compose prompt: {exc}", exit_code=-1)
        return self.runner.run(prompt, cwd=self.workspace)

    def run_iteration(self, index: int) -> IterationRecord:
        """Run a single iteration and append its record."""
        self.transcript.banner(index, self.max_iterations)
        started_at = datetime.now()
        started = time.monotonic()

        snap = self.snapshots.snapshot(f"iteration {index - 1}")
        if snap.error:
            logger.warning(f"Iteration {index}: snapshot failed, continuing")

        result = self._invoke_agent()
        if result.output:
            self.transcript.append(result.output)
        if not result.success:
            logger.warning(f"Iteration {index}: agent failed: {result.error}")

        changes = self.snapshots.pending_changes()
        record = IterationRecord(
            index=index,
            start_time=started_at,
            duration=time.monotonic() - started,
            files_touched=len(changes),
            diff_summary=snap.summary,
            changes_listing=format_change_listing(changes),
            agent_success=result.success,
            error=result.error,
        )
        self.progress.append(record)
        return record

    def run(self) -> InnerLoopResult:
        """Run until completion or until max_iterations is exhausted."""
        self.progress.start(self.token, self.max_iterations)
        logger.info(f"Starting build loop: max={self.max_iterations}, target={self.token}")

        status = CompletionStatus.pending()
        for index in range(1, self.max_iterations + 1):
            logger.info(f"Iteration {index} of {self.max_iterations}")
            self.run_iteration(index)

            status = parse_status(self.transcript.read(), self.target_phase)
            if is_satisfied(status, self.target_phase):
                self.progress.finish(f"COMPLETE at iteration {index}")
                final = self.snapshots.snapshot(
                    f"Phase {self.target_phase} complete at iteration {index}"
                )
                if final.error:
                    logger.warning("Final snapshot failed")
                logger.info(f"Done at iteration {index} ({status})")
                return InnerLoopResult(
                    state=LoopState.COMPLETE,
                    iterations=index,
                    status=status,
                    records=list(self.progress.records),
                )

            if index < self.max_iterations:
                self.sleep(self.iteration_delay)

        self.progress.finish("MAX ITERATIONS REACHED")
        logger.info("Hit max iterations")
        return InnerLoopResult(
            state=LoopState.EXHAUSTED,
            iterations=self.max_iterations,
            status=status,
            records=list(self.progress.records),
        )
