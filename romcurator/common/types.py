"""
Shared types and aliases for romcurator.
Centralizes result definitions used across the candidate modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from romcurator.files.file import File


class WriteOutcome(str, Enum):
    """Lifecycle of one ROM binding inside the writer."""

    PENDING = "pending"
    SKIPPED = "skipped"
    WRITE_ATTEMPTED = "write_attempted"
    VERIFIED = "verified"
    FAILED = "failed"


class MoveResult(str, Enum):
    RENAMED = "renamed"
    COPIED = "copied"


@dataclass
class BindingOutcome:
    """Final state of one input -> output binding."""
    input_file: str
    output_file: str
    outcome: WriteOutcome = WriteOutcome.PENDING
    error_message: Optional[str] = None


@dataclass
class WriterResult:
    """Result of writing every candidate of one DAT."""
    dat_name: str
    wrote: list["File"] = field(default_factory=list)
    moved: list["File"] = field(default_factory=list)
    outcomes: list[BindingOutcome] = field(default_factory=list)
    duration_ms: float = 0

    def add_outcome(
        self,
        input_file: str,
        output_file: str,
        outcome: WriteOutcome,
        error: Optional[str] = None,
    ):
        self.outcomes.append(
            BindingOutcome(
                input_file=input_file,
                output_file=output_file,
                outcome=outcome,
                error_message=error,
            )
        )

    def count(self, outcome: WriteOutcome) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    @property
    def verified_count(self) -> int:
        return self.count(WriteOutcome.VERIFIED)

    @property
    def written_count(self) -> int:
        return self.count(WriteOutcome.WRITE_ATTEMPTED) + self.verified_count

    @property
    def skipped_count(self) -> int:
        return self.count(WriteOutcome.SKIPPED)

    @property
    def failed_count(self) -> int:
        return self.count(WriteOutcome.FAILED)

    @property
    def total_items(self) -> int:
        return len(self.outcomes)

    def __str__(self) -> str:
        return (
            f"{self.dat_name}: "
            f"{self.written_count} OK, "
            f"{self.failed_count} ERR, "
            f"{self.skipped_count} SKIP "
            f"({self.duration_ms:.0f}ms)"
        )
