"""Sources of variants awaiting annotation.

A source is any iterable of VariantRecord with a stable order; the input
writer consumes it lazily so large selections are never held in memory.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from varannot.db.models import Variant
from varannot.models import VariantRecord

logger = logging.getLogger(__name__)


class VariantSource(Protocol):
    def __iter__(self) -> Iterator[VariantRecord]: ...


class InMemoryVariantSource:
    """Wraps an already materialized list of variants."""

    def __init__(self, records: Iterable[VariantRecord]) -> None:
        self.records = list(records)

    def __iter__(self) -> Iterator[VariantRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


class SqlVariantSource:
    """Streams variants with no annotation, ordered by position."""

    def __init__(self, session_factory: sessionmaker, chunk_size: int = 1000) -> None:
        self.session_factory = session_factory
        self.chunk_size = chunk_size

    def _query(self, db: Session):
        return (
            db.query(Variant)
            .filter(Variant.annotation.is_(None))
            .order_by(Variant.chromosome, Variant.start, Variant.end, Variant.variant_id)
        )

    def count(self) -> int:
        with self.session_factory() as db:
            return self._query(db).count()

    def __iter__(self) -> Iterator[VariantRecord]:
        with self.session_factory() as db:
            n = 0
            for row in self._query(db).yield_per(self.chunk_size):
                n += 1
                yield VariantRecord(
                    chromosome=row.chromosome,
                    start=row.start,
                    end=row.end,
                    reference=row.reference or "",
                    alternate=row.alternate or "",
                    strand=row.strand or "+",
                )
            logger.debug("Read %d variants without annotation", n)
