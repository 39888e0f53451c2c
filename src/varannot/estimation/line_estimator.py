"""Estimate the number of data lines in a large gzip text file (e.g. a VCF).

Counting lines exactly means decompressing the whole file, which for a
multi-gigabyte VCF costs as much as the load itself. Instead:

1. read the header lines and the first ``sample_size`` data lines,
2. gzip the header and the sample separately and measure both,
3. divide the sample's compressed size by ``sample_size`` to get the
   compressed size of one line,
4. estimate = (file size - compressed header size) / compressed line size.

The default of 100 lines comes from a VCF with 157049 lines, where 100 was the
smallest sample giving an estimate close to the real count.

A file with fewer than ``sample_size`` data lines gets an estimate of 0,
which means "no estimate", not "no lines"; progress reporting then shows
counts without a percentage.
"""

from __future__ import annotations

import gzip
import logging
import tempfile
import zlib
from pathlib import Path

from varannot.exceptions import EstimationError

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 100
NUMBER_OF_LINES_KEY = "number_of_lines"


def estimate_from_sizes(
    header_bytes: int,
    sample_bytes: int,
    total_bytes: int,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> int:
    """Extrapolate a line count from compressed sizes.

    Pure function: no filesystem access. The per-line size is truncated to
    whole bytes; a sample under one byte per line gives 0.
    """
    if sample_size <= 0:
        return 0
    per_line_bytes = sample_bytes // sample_size
    if per_line_bytes <= 0:
        return 0
    return max(0, (total_bytes - header_bytes) // per_line_bytes)


def read_sample(
    path: str | Path,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    header_marker: str = "#",
) -> tuple[str, str, int]:
    """Scan the start of a gzip text file once.

    Returns ``(header, sample, data_lines_seen)``. ``sample`` holds the first
    ``sample_size`` data lines, or is empty when the file has fewer.
    """
    header_parts: list[str] = []
    sample_parts: list[str] = []
    try:
        with gzip.open(path, "rt", encoding="utf-8", errors="replace") as fh:
            for line in fh:
                if not line.endswith("\n"):
                    line += "\n"
                if line.startswith(header_marker):
                    header_parts.append(line)
                    continue
                sample_parts.append(line)
                if len(sample_parts) >= sample_size:
                    break
    except (OSError, EOFError, zlib.error) as e:
        raise EstimationError(f"Error reading {path}: {e}", path=str(path)) from e

    seen = len(sample_parts)
    sample = "".join(sample_parts) if seen >= sample_size else ""
    return "".join(header_parts), sample, seen


class LineCountEstimator:
    """File-backed adapter around :func:`estimate_from_sizes`."""

    def __init__(self, sample_size: int = DEFAULT_SAMPLE_SIZE, header_marker: str = "#") -> None:
        self.sample_size = sample_size
        self.header_marker = header_marker

    def estimate(self, path: str | Path) -> int:
        path = Path(path)
        if not path.is_file():
            raise EstimationError(f"File not found: {path}", path=str(path))

        header, sample, seen = read_sample(path, self.sample_size, self.header_marker)
        if not sample:
            logger.debug(
                "Only %d data lines in %s (sample needs %d); no estimate",
                seen, path, self.sample_size,
            )
            return 0

        with tempfile.TemporaryDirectory(prefix="varannot-estimate-") as tmpdir:
            header_file = _write_gzip(Path(tmpdir) / "header.gz", header)
            sample_file = _write_gzip(Path(tmpdir) / "sample.gz", sample)
            header_bytes = header_file.stat().st_size
            sample_bytes = sample_file.stat().st_size

        total_bytes = path.stat().st_size
        estimate = estimate_from_sizes(header_bytes, sample_bytes, total_bytes, self.sample_size)
        logger.debug(
            "Estimated %d lines in %s (file=%d, header=%d, sample=%d bytes)",
            estimate, path, total_bytes, header_bytes, sample_bytes,
        )
        return estimate


def _write_gzip(path: Path, text: str) -> Path:
    with open(path, "wb") as raw, gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
        gz.write(text.encode("utf-8"))
    return path
