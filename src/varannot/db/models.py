from typing import Optional

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Variant(Base):
    __tablename__ = "variants"
    __table_args__ = (
        Index("ix_variants_position", "chromosome", "start", "end"),
    )

    variant_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chromosome: Mapped[str] = mapped_column(String(50))
    start: Mapped[int] = mapped_column(Integer)
    end: Mapped[int] = mapped_column(Integer)
    reference: Mapped[str] = mapped_column(String(1000), default="")
    alternate: Mapped[str] = mapped_column(String(1000), default="")
    strand: Mapped[str] = mapped_column(String(1), default="+")
    # NULL until the annotation loader fills it in
    annotation: Mapped[Optional[str]] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Variant {self.chromosome}:{self.start} {self.reference}/{self.alternate}>"
