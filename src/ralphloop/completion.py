"""Completion tokens and transcript status parsing.

The agent signals milestones by printing fixed sentinel strings. A phase
token ends one inner run; the overall token ends the whole supervised build.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

OVERALL_TOKEN = "ANVIL_COMPLETE"
PHASE_TOKEN_TEMPLATE = "ANVIL_PHASE_{phase}_COMPLETE"
PHASES = (1, 2, 3)


def completion_token(phase: Union[int, str]) -> str:
    """Get the completion token watched for a target phase.

    Args:
        phase: 1, 2, 3 or "complete".

    Returns:
        The exact token string.

    Raises:
        ValueError: If the phase is unknown.
    """
    if phase == "complete":
        return OVERALL_TOKEN
    if phase in PHASES:
        return PHASE_TOKEN_TEMPLATE.format(phase=phase)
    raise ValueError(f"Unknown phase: {phase!r}")


def detect(transcript: str, token: str) -> bool:
    """Check whether a token occurs anywhere in the cumulative transcript.

    Matching is exact and case-sensitive. The whole transcript is scanned,
    not only the latest chunk.
    """
    if not token:
        return False
    return token in transcript


class StatusKind(str, Enum):
    """Kinds of transcript status."""

    PENDING = "pending"
    PHASE_COMPLETE = "phase_complete"
    COMPLETE = "complete"


@dataclass(frozen=True)
class CompletionStatus:
    """Tagged status value parsed from a transcript."""

    kind: StatusKind
    phase: Optional[int] = None

    @classmethod
    def pending(cls) -> CompletionStatus:
        return cls(StatusKind.PENDING)

    @classmethod
    def phase_complete(cls, phase: int) -> CompletionStatus:
        return cls(StatusKind.PHASE_COMPLETE, phase)

    @classmethod
    def complete(cls) -> CompletionStatus:
        return cls(StatusKind.COMPLETE)

    @property
    def is_pending(self) -> bool:
        return self.kind is StatusKind.PENDING

    def __str__(self) -> str:
        if self.kind is StatusKind.PHASE_COMPLETE:
            return f"PhaseComplete({self.phase})"
        return self.kind.name.title()


def parse_status(transcript: str, target_phase: Union[int, str]) -> CompletionStatus:
    """Parse the transcript into a status for the given target phase.

    The overall token wins over any phase token. Phase tokens other than the
    target are ignored.

    Args:
        transcript: Cumulative transcript text.
        target_phase: 1, 2, 3 or "complete".

    Returns:
        CompletionStatus for the transcript.
    """
    if detect(transcript, OVERALL_TOKEN):
        return CompletionStatus.complete()
    if target_phase != "complete" and detect(transcript, completion_token(target_phase)):
        return CompletionStatus.phase_complete(int(target_phase))
    return CompletionStatus.pending()


def is_satisfied(status: CompletionStatus, target_phase: Union[int, str]) -> bool:
    """Check whether a status ends an inner run targeting the given phase."""
    if status.kind is StatusKind.COMPLETE:
        return True
    if status.kind is StatusKind.PHASE_COMPLETE:
        return target_phase != "complete" and status.phase == int(target_phase)
    return False
