from varannot.estimation.line_estimator import (
    DEFAULT_SAMPLE_SIZE,
    NUMBER_OF_LINES_KEY,
    LineCountEstimator,
    estimate_from_sizes,
    read_sample,
)

__all__ = [
    "DEFAULT_SAMPLE_SIZE",
    "NUMBER_OF_LINES_KEY",
    "LineCountEstimator",
    "estimate_from_sizes",
    "read_sample",
]
