"""Annotation input writer.

Serializes variants lacking annotation into the five-column format read by
the annotation engine, one line per variant, gzip-compressed:

    <chromosome>\\t<start>\\t<end>\\t<ref>/<alt>\\t<strand>

The file never carries header lines. It is rebuilt from scratch on every
call: any previous file at the target path is removed first, and the new
content is written to a temporary sibling that only replaces the target
once the gzip stream is closed and synced to disk.
"""

from __future__ import annotations

import gzip
import logging
import os
import re
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from varannot.exceptions import InputGenerationError
from varannot.models import VariantRecord

logger = logging.getLogger(__name__)

_ALLELE_RE = re.compile(r"^(?:[ACGTN*]+|-)$", re.IGNORECASE)


def format_input_line(record: VariantRecord) -> str:
    """Render one variant as a tab-separated input line (no newline)."""
    return "\t".join([
        record.chromosome,
        str(record.start),
        str(record.end),
        record.allele_string,
        record.strand.value,
    ])


def _coerce(record: VariantRecord | Mapping[str, Any], index: int) -> VariantRecord:
    if isinstance(record, VariantRecord):
        return record
    if not isinstance(record, Mapping):
        raise InputGenerationError(
            f"Record {index}: expected a variant, got {type(record).__name__}", index=index,
        )
    try:
        return VariantRecord.model_validate(dict(record))
    except ValidationError as e:
        raise InputGenerationError(f"Record {index}: {e}", index=index) from e


def validate_record(record: VariantRecord, index: int) -> None:
    """Reject records that would produce a malformed input line."""
    chrom = record.chromosome.strip() if record.chromosome else ""
    if not chrom or any(c.isspace() for c in record.chromosome):
        raise InputGenerationError(
            f"Record {index}: invalid chromosome {record.chromosome!r}", index=index,
        )
    if record.start < 1:
        raise InputGenerationError(
            f"Record {index}: start must be >= 1, got {record.start}", index=index,
        )
    # Insertions are written with end == start - 1
    if record.end < record.start - 1:
        raise InputGenerationError(
            f"Record {index}: end {record.end} is before start {record.start}", index=index,
        )
    for name, allele in (("reference", record.reference), ("alternate", record.alternate)):
        if allele and not _ALLELE_RE.match(allele):
            raise InputGenerationError(
                f"Record {index}: invalid {name} allele {allele!r}", index=index,
            )


class VariantAnnotationInputWriter:
    """Writes the annotation engine input file for a batch of variants."""

    def __init__(self, path: str | Path, compress_level: int = 6) -> None:
        self.path = Path(path)
        self.compress_level = compress_level

    def write(self, records: Iterable[VariantRecord | Mapping[str, Any]]) -> int:
        """Write every record, in order, and return the number of lines written."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                logger.info("Removing previous annotation input %s", self.path)
                self.path.unlink()
        except OSError as e:
            raise InputGenerationError(
                f"Cannot prepare annotation input {self.path}: {e}", path=str(self.path),
            ) from e

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent,
        )
        tmp_path = Path(tmp_name)
        count = 0
        try:
            with os.fdopen(fd, "wb") as raw:
                # Fixed mtime and no embedded name keep reruns byte-identical
                with gzip.GzipFile(
                    filename="", mode="wb", fileobj=raw,
                    compresslevel=self.compress_level, mtime=0,
                ) as gz:
                    for index, item in enumerate(records):
                        record = _coerce(item, index)
                        validate_record(record, index)
                        gz.write((format_input_line(record) + "\n").encode("utf-8"))
                        count += 1
                raw.flush()
                os.fsync(raw.fileno())
            os.replace(tmp_path, self.path)
        except InputGenerationError as e:
            e.path = str(self.path)
            raise
        except ValidationError as e:
            # Raised by a source that builds records lazily
            raise InputGenerationError(
                f"Record {count}: {e}", path=str(self.path), index=count,
            ) from e
        except OSError as e:
            raise InputGenerationError(
                f"I/O error writing annotation input {self.path}: {e}", path=str(self.path),
            ) from e
        finally:
            # No-op once os.replace has moved the file into place
            tmp_path.unlink(missing_ok=True)

        logger.info("Wrote %d variants to annotation input %s", count, self.path)
        return count
