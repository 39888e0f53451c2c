"""Annotation flow: generate the engine input, then run the engine.

    variants without annotation -> input file (gzip) -> engine -> output file (gzip)

The flow stops at the first failing step; the exception reaches the caller
with the failed StepExecution attached as ``step_execution``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from varannot.annotation.invoker import AnnotatorCommand
from varannot.estimation.line_estimator import LineCountEstimator
from varannot.models import StepExecution
from varannot.pipeline.listeners import LineCountEstimatorListener, StepProgressListener
from varannot.pipeline.steps import AnnotationGeneratorStep, GenerateInputStep, run_step
from varannot.sources import VariantSource

logger = logging.getLogger(__name__)


def run_annotation_flow(
    source: VariantSource,
    input_path: str | Path,
    output_path: str | Path,
    command: AnnotatorCommand,
    timeout: float | None = None,
    sample_size: int = 100,
) -> list[StepExecution]:
    """Run both annotation steps in order and return their executions."""
    progress = StepProgressListener()
    steps_and_listeners = [
        (GenerateInputStep(source, input_path, listeners=[progress]), []),
        (
            AnnotationGeneratorStep(command, input_path, output_path, timeout=timeout),
            [LineCountEstimatorListener(input_path, LineCountEstimator(sample_size))],
        ),
    ]

    executions: list[StepExecution] = []
    for step, listeners in steps_and_listeners:
        execution = StepExecution(step_name=step.name)
        executions.append(execution)
        try:
            run_step(step, execution, listeners=listeners)
        except Exception as e:
            e.step_execution = execution
            raise

    logger.info(
        "Annotation flow finished: %d variants in, %d annotation lines out",
        executions[0].write_count, executions[1].write_count,
    )
    return executions
