"""Tests for the agent runner."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

from ralphloop.agent_runner import AgentResult, AgentRunner, MockAgentRunner


def python_agent(code: str) -> list[str]:
    """Agent command running an inline Python script."""
    return [sys.executable, "-c", code]


class TestAgentRunner:
    """Tests for AgentRunner."""

    def test_string_command_is_split(self) -> None:
        runner = AgentRunner("opencode --model 'qwen2.5-coder:14b'")
        assert runner.command == ["opencode", "--model", "qwen2.5-coder:14b"]
        assert runner.timeout is None

    def test_prompt_on_stdin(self) -> None:
        runner = AgentRunner(python_agent("import sys; print(sys.stdin.read().upper())"))

        result = runner.run("build the lexer")

        assert result.success
        assert "BUILD THE LEXER" in result.output
        assert result.exit_code == 0

    def test_stderr_merged_into_output(self) -> None:
        runner = AgentRunner(python_agent("import sys; print('out'); print('err', file=sys.stderr)"))

        result = runner.run("")

        assert "out" in result.output
        assert "err" in result.output

    def test_nonzero_exit(self) -> None:
        runner = AgentRunner(python_agent("import sys; print('partial'); sys.exit(3)"))

        result = runner.run("")

        assert not result.success
        assert result.exit_code == 3
        assert "partial" in result.output

    def test_cwd(self, tmp_path: Path) -> None:
        runner = AgentRunner(python_agent("import os; print(os.getcwd())"))
        result = runner.run("", cwd=tmp_path)
        assert Path(result.output.strip()).resolve() == tmp_path.resolve()

    def test_command_not_found(self) -> None:
        runner = AgentRunner(["definitely-not-an-agent-binary-xyz"])

        result = runner.run("prompt")

        assert not result.success
        assert result.exit_code == -1
        assert "not found" in result.error

    def test_timeout_is_transient_failure(self) -> None:
        runner = AgentRunner(["opencode"], timeout=5)
        timeout = subprocess.TimeoutExpired(cmd=["opencode"], timeout=5, output=b"half done")

        with patch("ralphloop.agent_runner.subprocess.run", side_effect=timeout):
            result = runner.run("prompt")

        assert not result.success
        assert result.timed_out
        assert result.output == "half done"
        assert "timed out" in result.error

    def test_passes_timeout(self) -> None:
        runner = AgentRunner(["opencode"], timeout=12)
        completed = MagicMock(returncode=0, stdout="ok")

        with patch("ralphloop.agent_runner.subprocess.run", return_value=completed) as run:
            runner.run("prompt")

        assert run.call_args.kwargs["timeout"] == 12
        assert run.call_args.kwargs["input"] == "prompt"


class TestMockAgentRunner:
    """Tests for MockAgentRunner."""

    def test_scripted_outputs(self) -> None:
        runner = MockAgentRunner(outputs=["one", "two"], default_output="rest")

        assert runner.run("a").output == "one"
        assert runner.run("b").output == "two"
        assert runner.run("c").output == "rest"
        assert runner.prompts == ["a", "b", "c"]
        assert runner.call_count == 3

    def test_failures(self) -> None:
        runner = MockAgentRunner()
        runner.fail_calls = {1}

        result = runner.run("a")

        assert isinstance(result, AgentResult)
        assert not result.success
        assert runner.run("b").success
