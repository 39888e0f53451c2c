"""Annotation steps and the step runner.

Each step does its work in ``execute(execution)`` and records counts and
results in the StepExecution. ``run_step`` owns status, timestamps, and
listener hooks; failures are recorded and re-raised to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence, Sized
from datetime import datetime, timezone
from pathlib import Path

from varannot.annotation.input_writer import VariantAnnotationInputWriter
from varannot.annotation.invoker import AnnotatorCommand, ExternalAnnotatorInvoker
from varannot.estimation.line_estimator import NUMBER_OF_LINES_KEY
from varannot.models import StepExecution, StepStatus, VariantRecord
from varannot.pipeline.listeners import StepListener
from varannot.sources import SqlVariantSource, VariantSource

logger = logging.getLogger(__name__)

GENERATE_INPUT_STEP = "generate_annotation_input"
GENERATE_ANNOTATION_STEP = "generate_annotation"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GenerateInputStep:
    """Write every variant from ``source`` into the annotation input file."""

    name = GENERATE_INPUT_STEP

    def __init__(
        self,
        source: VariantSource,
        output_path: str | Path,
        chunk_size: int = 1000,
        listeners: Sequence[StepListener] = (),
    ) -> None:
        self.source = source
        self.writer = VariantAnnotationInputWriter(output_path)
        self.chunk_size = chunk_size
        self.listeners = listeners

    def _counted(self, execution: StepExecution) -> Iterator[VariantRecord]:
        for record in self.source:
            yield record
            execution.read_count += 1
            if execution.read_count % self.chunk_size == 0:
                for listener in self.listeners:
                    listener.after_chunk(execution)

    def execute(self, execution: StepExecution) -> None:
        if isinstance(self.source, SqlVariantSource):
            execution.context[NUMBER_OF_LINES_KEY] = self.source.count()
        elif isinstance(self.source, Sized):
            execution.context[NUMBER_OF_LINES_KEY] = len(self.source)

        execution.write_count = self.writer.write(self._counted(execution))
        execution.context["input_path"] = str(self.writer.path)
        if execution.read_count % self.chunk_size:
            for listener in self.listeners:
                listener.after_chunk(execution)


class AnnotationGeneratorStep:
    """Run the annotation engine on the input file."""

    name = GENERATE_ANNOTATION_STEP

    def __init__(
        self,
        command: AnnotatorCommand,
        input_path: str | Path,
        output_path: str | Path,
        timeout: float | None = None,
    ) -> None:
        self.command = command
        self.input_path = Path(input_path)
        self.output_path = Path(output_path)
        self.timeout = timeout
        self.invoker: ExternalAnnotatorInvoker | None = None
        self._cancelled = False

    def execute(self, execution: StepExecution) -> None:
        estimate = execution.context.get(NUMBER_OF_LINES_KEY, 0)
        if estimate > 0:
            logger.info("Annotating about %d variants from %s", estimate, self.input_path)
        else:
            logger.info("Annotating %s (variant count not estimated)", self.input_path)

        self.invoker = ExternalAnnotatorInvoker(self.command, timeout=self.timeout)
        if self._cancelled:
            self.invoker.cancel()
        result = self.invoker.run(self.input_path, self.output_path)
        execution.write_count = result.output_lines
        execution.context.update({
            "output_path": result.output_path,
            "output_lines": result.output_lines,
            "returncode": result.returncode,
            "duration_seconds": result.duration_seconds,
        })

    def cancel(self) -> None:
        self._cancelled = True
        if self.invoker is not None:
            self.invoker.cancel()


def run_step(
    step,
    execution: StepExecution | None = None,
    listeners: Sequence[StepListener] = (),
) -> StepExecution:
    """Execute ``step`` and return its StepExecution; errors are re-raised."""
    execution = execution or StepExecution(step_name=step.name)
    execution.status = StepStatus.RUNNING
    execution.started_at = _now()
    logger.info("Step %s started", step.name)

    try:
        for listener in listeners:
            listener.before_step(execution)
        step.execute(execution)
    except Exception as e:
        execution.status = StepStatus.FAILED
        execution.error = f"{type(e).__name__}: {e}"
        execution.finished_at = _now()
        logger.error("Step %s failed: %s", step.name, execution.error)
        raise

    execution.status = StepStatus.COMPLETED
    execution.finished_at = _now()
    for listener in listeners:
        listener.after_step(execution)
    logger.info(
        "Step %s completed: read=%d write=%d",
        step.name, execution.read_count, execution.write_count,
    )
    return execution
