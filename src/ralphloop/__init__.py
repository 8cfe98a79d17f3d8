"""Autonomous build-loop orchestrator for code-generation agents."""

__version__ = "0.1.0"
