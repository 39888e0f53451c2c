"""Data models shared by the annotation step."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Strand(enum.StrEnum):
    FORWARD = "+"
    REVERSE = "-"


class VariantRecord(BaseModel):
    """A single genomic position and allele change awaiting annotation."""

    model_config = ConfigDict(frozen=True)

    chromosome: str
    start: int
    end: int
    reference: str = ""
    alternate: str = ""
    strand: Strand = Strand.FORWARD

    @property
    def allele_string(self) -> str:
        """``ref/alt`` with empty alleles written as ``-``."""
        return f"{self.reference or '-'}/{self.alternate or '-'}"


class ProcessState(enum.StrEnum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"


class StepStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepExecution(BaseModel):
    """Bookkeeping for one run of a step.

    ``context`` is the execution context shared with listeners; the line
    count estimate lives there under ``number_of_lines``.
    """

    step_name: str
    status: StepStatus = StepStatus.PENDING
    context: dict[str, Any] = Field(default_factory=dict)
    read_count: int = 0
    write_count: int = 0
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class InvocationResult(BaseModel):
    """Outcome of a successful annotation engine run."""
    command: list[str]
    returncode: int
    state: ProcessState
    duration_seconds: float
    output_path: str
    output_lines: int
    stderr_tail: str = ""
