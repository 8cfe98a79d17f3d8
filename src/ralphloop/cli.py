"""CLI entrypoint for ralphloop.

Two loops are exposed:
1. `build` - the inner loop: run the agent until the target phase token
   appears or the iteration budget runs out.
2. `supervise` - the outer loop: run `build` repeatedly, learning from
   failures, until the overall completion token appears.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .completion import completion_token
from .config import Config, parse_phase
from .inner_loop import InnerLoop
from .model_registry import ModelConfigStore, ModelRegistry
from .outer_loop import Supervisor
from .progress import tail_lines
from .prompts import PromptSources
from .snapshot import SnapshotStore

app = typer.Typer(
    name="ralph",
    help="Autonomous build-loop orchestrator for code-generation agents.",
    add_completion=False,
)

console = Console()

META_LOG_FORMAT = "[%(asctime)s] %(message)s"
META_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: If True, set DEBUG level regardless of `level`.
        level: Level name used when not verbose.
    """
    resolved = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def add_meta_log(path: Path) -> logging.Handler:
    """Mirror log records into the meta-loop log file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(META_LOG_FORMAT, datefmt=META_LOG_DATEFMT))
    logging.getLogger().addHandler(handler)
    return handler


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ralphloop version {__version__}")
        raise typer.Exit()


def load_config(
    workspace: Path,
    max_iterations: Optional[int] = None,
    phase: Optional[str] = None,
    prompt_file: Optional[str] = None,
) -> Config:
    """Load configuration and apply CLI overrides, exiting on errors."""
    workspace = workspace.resolve()
    if not workspace.exists():
        console.print(f"[red]Error:[/red] Workspace does not exist: {workspace}")
        raise typer.Exit(1)

    try:
        config = Config.from_env(workspace)
        if max_iterations is not None:
            config.loop.max_iterations = max_iterations
        if phase is not None:
            config.loop.target_phase = parse_phase(phase)
        if prompt_file is not None:
            config.loop.prompt_file = prompt_file
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)

    setup_logging(level=config.log_level)
    return config


def _require_prompt(config: Config) -> None:
    if not config.prompt_path.exists():
        console.print(f"[red]Error:[/red] Prompt file not found: {config.prompt_path}")
        raise typer.Exit(1)


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Autonomous build-loop orchestrator."""
    pass


@app.command()
def build(
    workspace: Path = typer.Option(
        Path.cwd(),
        "--workspace",
        "-w",
        help="Workspace the agent builds in.",
    ),
    max_iterations: Optional[int] = typer.Option(
        None,
        "--max-iterations",
        "-n",
        help="Maximum iterations (default: RALPH_MAX_ITERATIONS or 500).",
    ),
    phase: Optional[str] = typer.Option(
        None,
        "--phase",
        "-p",
        help="Target phase: 1, 2, 3 or 'complete' (default: RALPH_TARGET_PHASE or 1).",
    ),
    prompt_file: Optional[str] = typer.Option(
        None,
        "--prompt-file",
        "-f",
        help="Base task prompt, relative to the workspace (default: RALPH_PROMPT.md).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Run the inner build loop until the phase token or the iteration limit."""
    config = load_config(workspace, max_iterations, phase, prompt_file)
    if verbose:
        setup_logging(verbose=True)
    _require_prompt(config)

    token = completion_token(config.loop.target_phase)
    console.print(f"\n[bold]Starting Ralph[/bold]: max={config.loop.max_iterations}, target={token}")
    console.print(f"[dim]Watch progress:[/dim] tail -f {config.progress_path}")
    console.print(f"[dim]Full log:[/dim] tail -f {config.transcript_path}")
    console.print()

    snapshots = SnapshotStore(config.workspace)
    snapshots.ensure_repository()

    result = InnerLoop.from_config(config, snapshots=snapshots).run()

    if result.success:
        console.print(f"\n[green]Done at iteration {result.iterations}[/green] ({result.status})")
    else:
        console.print(f"\n[yellow]Hit max iterations[/yellow] ({result.iterations})")
    raise typer.Exit(result.exit_code)


@app.command()
def supervise(
    workspace: Path = typer.Option(
        Path.cwd(),
        "--workspace",
        "-w",
        help="Workspace the agent builds in.",
    ),
    max_cycles: Optional[int] = typer.Option(
        None,
        "--max-cycles",
        help="Stop after this many meta iterations (default: run until complete).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Run the outer meta-loop until ANVIL_COMPLETE."""
    config = load_config(workspace)
    if verbose:
        setup_logging(verbose=True)
    if max_cycles is not None:
        config.meta.max_cycles = max_cycles
    _require_prompt(config)

    add_meta_log(config.meta_log_path)
    SnapshotStore(config.workspace).ensure_repository()

    result = Supervisor.from_config(config).run()

    if result.success:
        console.print(f"\n[green]Build complete after {result.cycles} meta iterations[/green]")
    else:
        console.print(f"\n[yellow]Stopped after {result.cycles} meta iterations[/yellow]")
    raise typer.Exit(result.exit_code)


@app.command()
def prompt(
    workspace: Path = typer.Option(
        Path.cwd(),
        "--workspace",
        "-w",
        help="Workspace the agent builds in.",
    ),
) -> None:
    """Print the effective prompt the next iteration would send."""
    config = load_config(workspace)
    _require_prompt(config)
    sources = PromptSources(
        prompt_file=config.prompt_path,
        additions_file=config.additions_path,
        learnings_file=config.learnings_path,
    )
    console.print(sources.compose(), markup=False, highlight=False)


def _registry(config: Config) -> ModelRegistry:
    return ModelRegistry(
        ModelConfigStore(config.model_config_path),
        base_url=config.backend.url,
        provider=config.backend.provider,
        timeout=config.backend.timeout,
    )


@app.command()
def models(
    workspace: Path = typer.Option(
        Path.cwd(),
        "--workspace",
        "-w",
        help="Workspace holding the model config.",
    ),
) -> None:
    """List models available on the backend."""
    config = load_config(workspace)
    registry = _registry(config)
    available = registry.list_models()
    current = registry.current_model()

    if not available:
        console.print(f"[yellow]No models found at {config.backend.url}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Models at {config.backend.url}")
    table.add_column("Model", style="cyan")
    table.add_column("Active")
    table.add_column("Candidate")
    for name in sorted(available):
        table.add_row(
            name,
            "[green]yes[/green]" if name == current else "",
            "yes" if name in config.backend.candidates else "",
        )
    console.print(table)


@app.command("switch-model")
def switch_model(
    name: str = typer.Argument(..., help="Model to make active (pulled if missing)."),
    workspace: Path = typer.Option(
        Path.cwd(),
        "--workspace",
        "-w",
        help="Workspace holding the model config.",
    ),
) -> None:
    """Switch the active model."""
    config = load_config(workspace)
    model_config = _registry(config).switch_model(name)
    console.print(f"[green]Active model:[/green] {model_config.model} ({model_config.provider})")


@app.command()
def status(
    workspace: Path = typer.Option(
        Path.cwd(),
        "--workspace",
        "-w",
        help="Workspace the agent builds in.",
    ),
    lines: int = typer.Option(20, "--lines", "-l", help="Progress log lines to show."),
) -> None:
    """Show the active model and the tail of the progress log."""
    config = load_config(workspace)
    model_config = ModelConfigStore(config.model_config_path).read()

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Workspace", str(config.workspace))
    table.add_row("Target", completion_token(config.loop.target_phase))
    table.add_row("Model", model_config.model if model_config else "(not configured)")
    table.add_row("Backend", model_config.base_url if model_config else config.backend.url)
    console.print(table)
    console.print()

    if config.progress_path.exists():
        text = config.progress_path.read_text(encoding="utf-8")
        for line in tail_lines(text, lines):
            console.print(line, markup=False, highlight=False)
    else:
        console.print("[dim]No progress log yet.[/dim]")
