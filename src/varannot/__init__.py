"""varannot: generate annotation input, run the annotation engine, estimate line counts."""

__version__ = "0.1.0"
