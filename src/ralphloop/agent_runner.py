"""Invocation of the external code-generation agent.

The agent is a black box: it receives the effective prompt on stdin and
writes free-form text to stdout. Its stderr is merged into the same stream.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class AgentResult:
    """Result from one agent invocation."""

    success: bool
    output: str = ""
    error: Optional[str] = None
    exit_code: int = 0
    duration: float = 0.0
    timed_out: bool = False


class AgentRunner:
    """Runs the agent command with a prompt on stdin."""

    def __init__(
        self,
        command: Union[str, List[str]] = "opencode",
        timeout: Optional[float] = None,
    ):
        """Initialize the agent runner.

        Args:
            command: Agent command line, as a string or argument list.
            timeout: Maximum seconds per invocation. None waits indefinitely.
        """
        if isinstance(command, str):
            self.command = shlex.split(command, posix=True)
        else:
            self.command = list(command)
        self.timeout = timeout

    def run(self, prompt: str, cwd: Optional[Path] = None) -> AgentResult:
        """Run the agent once.

        Args:
            prompt: Text fed to the agent's standard input.
            cwd: Working directory for the agent.

        Returns:
            AgentResult. Failures are reported, never raised.
        """
        started = time.monotonic()
        logger.debug(f"Invoking agent: {' '.join(self.command)}")

        try:
            result = subprocess.run(
                self.command,
                input=prompt,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                cwd=cwd,
                timeout=self.timeout,
            )
            duration = time.monotonic() - started

            if result.returncode == 0:
                return AgentResult(
                    success=True,
                    output=result.stdout or "",
                    exit_code=0,
                    duration=duration,
                )

            error_msg = f"Agent exited with code {result.returncode}"
            logger.warning(error_msg)
            return AgentResult(
                success=False,
                output=result.stdout or "",
                error=error_msg,
                exit_code=result.returncode,
                duration=duration,
            )

        except subprocess.TimeoutExpired as exc:
            partial = exc.stdout or ""
            if isinstance(partial, bytes):
                partial = partial.decode(errors="replace")
            logger.error(f"Agent timed out after {self.timeout}s")
            return AgentResult(
                success=False,
                output=partial,
                error=f"Agent timed out after {self.timeout} seconds",
                exit_code=-1,
                duration=time.monotonic() - started,
                timed_out=True,
            )
        except FileNotFoundError:
            logger.error(f"Agent command not found: {self.command[0]}")
            return AgentResult(
                success=False,
                error=f"Agent command not found in PATH: {self.command[0]}",
                exit_code=-1,
                duration=time.monotonic() - started,
            )
        except OSError as exc:
            logger.error(f"Failed to run agent: {exc}")
            return AgentResult(
                success=False,
                error=f"Failed to run agent: {exc}",
                exit_code=-1,
                duration=time.monotonic() - started,
            )


class MockAgentRunner(AgentRunner):
    """Mock agent runner returning scripted outputs."""

    def __init__(self, outputs: Optional[List[str]] = None, default_output: str = "working..."):
        """Initialize mock runner.

        Args:
            outputs: Outputs returned by successive calls.
            default_output: Output once the scripted outputs run out.
        """
        super().__init__(command=["mock-agent"])
        self.outputs = list(outputs or [])
        self.default_output = default_output
        self.prompts: List[str] = []
        self.fail_calls: set[int] = set()

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    def run(self, prompt: str, cwd: Optional[Path] = None) -> AgentResult:
        self.prompts.append(prompt)
        if self.call_count in self.fail_calls:
            return AgentResult(success=False, error="mock agent failure", exit_code=1)
        index = self.call_count - 1
        output = self.outputs[index] if index < len(self.outputs) else self.default_output
        return AgentResult(success=True, output=output)
