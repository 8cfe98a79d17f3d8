"""Outer supervisory loop.

Runs the inner loop to one of its terminal states, then analyzes what
happened, switches models when the builder is struggling, refreshes the
prompt additions and rebuilds the environment when its manifest changed.
It keeps going until the overall completion token shows up.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from .agent_runner import AgentRunner
from .analyzer import (
    FailureAnalyzer,
    PROGRESS_WINDOW,
    count_error_lines,
    recent_error_lines,
    should_switch_model,
)
from .completion import OVERALL_TOKEN, detect
from .config import Config
from .environment import EnvironmentManager
from .inner_loop import InnerLoop, InnerLoopResult
from .model_registry import ModelConfigStore, ModelRegistry, select_next_model
from .progress import ProgressLog, Transcript, tail_lines
from .state import AdditionsStore, LearningsStore

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    """States the supervisor moves through within a cycle."""

    SUPERVISING = "supervising"
    ANALYZING = "analyzing"
    EVALUATING_MODEL = "evaluating_model"
    SWITCHING = "switching"
    UPDATING_ADDITIONS = "updating_additions"
    CHECKING_REBUILD = "checking_rebuild"
    DONE = "done"
    STOPPED = "stopped"


@dataclass
class CycleReport:
    """What happened in one supervisory cycle."""

    cycle: int
    inner: InnerLoopResult
    recent_errors: int = 0
    analyzed: bool = False
    switched_to: Optional[str] = None
    additions_updated: bool = False
    rebuilt: bool = False


@dataclass
class SupervisorResult:
    """Outcome of the supervisory loop."""

    state: SupervisorState
    cycles: int
    reports: list[CycleReport] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state is SupervisorState.DONE

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class Supervisor:
    """Unbounded supervisory loop around the inner build loop."""

    def __init__(
        self,
        inner_factory: Callable[[], InnerLoop],
        analyzer: FailureAnalyzer,
        registry: ModelRegistry,
        environment: EnvironmentManager,
        learnings: LearningsStore,
        additions: AdditionsStore,
        transcript: Transcript,
        progress: ProgressLog,
        candidates: Sequence[str],
        default_model: str,
        switch_min_iterations: int = 20,
        switch_min_errors: int = 50,
        cycle_delay: float = 5.0,
        max_cycles: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the supervisor.

        Args:
            inner_factory: Creates a fresh inner loop for each cycle.
            analyzer: Failure analyzer.
            registry: Model registry owning the active model config.
            environment: Manifest watcher and rebuilder.
            learnings: Learnings document.
            additions: Prompt additions document.
            transcript: The session transcript the inner loop appends to.
            progress: The inner loop's progress log.
            candidates: Ordered model candidates for switching.
            default_model: Model pulled and configured at startup if needed.
            switch_min_iterations: Iterations that must be exceeded to switch.
            switch_min_errors: Recent error lines that must be exceeded to switch.
            cycle_delay: Seconds between cycles.
            max_cycles: Optional cap on cycles. None runs until done.
            sleep: Delay function.
        """
        self.inner_factory = inner_factory
        self.analyzer = analyzer
        self.registry = registry
        self.environment = environment
        self.learnings = learnings
        self.additions = additions
        self.transcript = transcript
        self.progress = progress
        self.candidates = list(candidates)
        self.default_model = default_model
        self.switch_min_iterations = switch_min_iterations
        self.switch_min_errors = switch_min_errors
        self.cycle_delay = cycle_delay
        self.max_cycles = max_cycles
        self.sleep = sleep
        self.state = SupervisorState.SUPERVISING

    @classmethod
    def from_config(
        cls,
        config: Config,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Supervisor:
        """Wire a supervisor and its collaborators from configuration."""
        registry = ModelRegistry(
            ModelConfigStore(config.model_config_path),
            base_url=config.backend.url,
            provider=config.backend.provider,
            timeout=config.backend.timeout,
        )
        analyzer = FailureAnalyzer(
            AgentRunner(config.loop.agent_command, timeout=config.meta.analysis_timeout),
            additions_min_lines=config.meta.additions_min_lines,
            cwd=config.workspace,
        )
        environment = EnvironmentManager(
            manifest_path=config.manifest_path,
            hash_path=config.manifest_hash_path,
            rebuild_command=config.meta.rebuild_command,
            cwd=config.workspace,
        )
        return cls(
            inner_factory=lambda: InnerLoop.from_config(config, sleep=sleep),
            analyzer=analyzer,
            registry=registry,
            environment=environment,
            learnings=LearningsStore(config.learnings_path),
            additions=AdditionsStore(config.additions_path),
            transcript=Transcript(config.transcript_path),
            progress=ProgressLog(config.progress_path),
            candidates=config.backend.candidates,
            default_model=config.backend.default_model,
            switch_min_iterations=config.meta.switch_min_iterations,
            switch_min_errors=config.meta.switch_min_errors,
            cycle_delay=config.meta.cycle_delay,
            max_cycles=config.meta.max_cycles,
            sleep=sleep,
        )

    def _enter(self, state: SupervisorState) -> None:
        self.state = state
        logger.debug(f"Supervisor state: {state.value}")

    def prepare(self) -> None:
        """Initialize documents, the model backend and the manifest hash."""
        self.learnings.ensure()
        self.additions.ensure()
        self.registry.ensure_default_model(self.default_model)
        self.registry.ensure_config(self.default_model)
        self.environment.save_hash()

    def analyze(self, cycle: int) -> bool:
        """Analyze the last run and fold the narrative into the learnings."""
        self._enter(SupervisorState.ANALYZING)
        log_text = self.transcript.read()
        progress_text = "\n".join(tail_lines(self.progress.read(), PROGRESS_WINDOW))
        result = self.analyzer.analyze(progress_text, recent_error_lines(log_text))
        if not result.success:
            return False
        logger.info("Updating learnings...")
        self.learnings.append_analysis(result.content, cycle)
        return True

    def evaluate_model(self, iterations: int) -> tuple[bool, int]:
        """Check whether the builder is struggling with the current model.

        Returns:
            (switch needed, recent error line count).
        """
        self._enter(SupervisorState.EVALUATING_MODEL)
        logger.info(f"Current model: {self.registry.current_model() or 'unknown'}")
        errors = count_error_lines(self.transcript.read())
        needed = should_switch_model(
            iterations, errors, self.switch_min_iterations, self.switch_min_errors
        )
        if needed:
            logger.info("High error rate detected. Switching models.")
        return needed, errors

    def switch_model(self) -> str:
        self._enter(SupervisorState.SWITCHING)
        target = select_next_model(self.registry.current_model(), self.candidates)
        self.registry.switch_model(target)
        return target

    def update_additions(self) -> bool:
        """Regenerate prompt additions, keeping the old ones on weak output."""
        self._enter(SupervisorState.UPDATING_ADDITIONS)
        generated = self.analyzer.regenerate_additions(self.learnings.read() or "")
        if generated is None:
            return False
        self.additions.replace(generated)
        logger.info("Prompt additions updated")
        return True

    def check_rebuild(self) -> bool:
        self._enter(SupervisorState.CHECKING_REBUILD)
        result = self.environment.check_and_rebuild()
        return result.triggered and result.success

    def run_cycle(self, cycle: int) -> CycleReport:
        """Run the inner loop once and perform the post-run steps.

        Sets `state` to DONE when the overall completion token was seen.
        """
        self._enter(SupervisorState.SUPERVISING)
        logger.info("Starting builder...")
        inner = self.inner_factory().run()
        report = CycleReport(cycle=cycle, inner=inner)

        logger.info("Builder stopped, analyzing...")
        report.analyzed = self.analyze(cycle)

        if detect(self.transcript.read(), OVERALL_TOKEN):
            self._enter(SupervisorState.DONE)
            return report

        switch, report.recent_errors = self.evaluate_model(inner.iterations)
        if switch:
            report.switched_to = self.switch_model()

        report.additions_updated = self.update_additions()
        report.rebuilt = self.check_rebuild()
        return report

    def run(self) -> SupervisorResult:
        """Supervise until the overall completion token appears."""
        logger.info("=== Meta Loop Starting ===")
        logger.info(f"Backend: {self.registry.base_url}")
        self.prepare()

        reports: list[CycleReport] = []
        cycle = 0
        while True:
            cycle += 1
            logger.info(f"=== Meta Iteration {cycle} ===")
            reports.append(self.run_cycle(cycle))

            if self.state is SupervisorState.DONE:
                logger.info(f"=== {OVERALL_TOKEN} ===")
                return SupervisorResult(state=SupervisorState.DONE, cycles=cycle, reports=reports)

            if self.max_cycles is not None and cycle >= self.max_cycles:
                logger.info(f"Stopping after {cycle} meta iterations")
                self._enter(SupervisorState.STOPPED)
                return SupervisorResult(state=SupervisorState.STOPPED, cycles=cycle, reports=reports)

            logger.info("Restarting builder with updates...")
            self.sleep(self.cycle_delay)
