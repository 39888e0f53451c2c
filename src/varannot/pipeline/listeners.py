"""Step listeners: line count estimation and progress reporting."""

from __future__ import annotations

import logging
from pathlib import Path

from varannot.estimation.line_estimator import NUMBER_OF_LINES_KEY, LineCountEstimator
from varannot.exceptions import EstimationError
from varannot.models import StepExecution

logger = logging.getLogger(__name__)


class StepListener:
    """No-op base; subclasses override the hooks they need."""

    def before_step(self, execution: StepExecution) -> None:
        pass

    def after_chunk(self, execution: StepExecution) -> None:
        pass

    def after_step(self, execution: StepExecution) -> None:
        pass


class LineCountEstimatorListener(StepListener):
    """Store an estimate of the lines in ``path`` before the step starts.

    An estimate of 0 means the file was too small to sample, so no
    percentage is shown.
    """

    def __init__(self, path: str | Path, estimator: LineCountEstimator | None = None) -> None:
        self.path = Path(path)
        self.estimator = estimator or LineCountEstimator()

    def before_step(self, execution: StepExecution) -> None:
        logger.debug("Estimating the number of lines in %s", self.path)
        try:
            estimate = self.estimator.estimate(self.path)
        except EstimationError as e:
            # Progress hints never block the step
            logger.warning("Line estimation skipped: %s", e)
            estimate = 0
        logger.debug("Estimated number of lines in %s: %d", self.path, estimate)
        execution.context[NUMBER_OF_LINES_KEY] = estimate


class StepProgressListener(StepListener):
    def __init__(self, total_key: str = NUMBER_OF_LINES_KEY) -> None:
        self.total_key = total_key

    def after_chunk(self, execution: StepExecution) -> None:
        total = execution.context.get(self.total_key, 0) or 0
        read = execution.read_count
        if total > 0:
            percent = min(100.0, read * 100.0 / total)
            logger.info("%s: %d lines read (%.0f%%)", execution.step_name, read, percent)
        else:
            logger.info("%s: %d lines read", execution.step_name, read)
