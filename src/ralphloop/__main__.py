"""Main entry point for running ralphloop as a module.

Usage:
    python -m ralphloop --help
    python -m ralphloop build --max-iterations 50
    python -m ralphloop supervise
"""

from __future__ import annotations

from .cli import app

if __name__ == "__main__":
    app()
