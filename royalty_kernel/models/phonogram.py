"""
Module: royalty_kernel.models.phonogram
Responsibility: ORM persistence for phonograms (sound recordings).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - isrc is globally unique and immutable (ORM listener in
      db/immutability.py); title and artist may be corrected
      administratively.
    - The phonogram row is the per-phonogram lock target: ownership claims
      and conflict filings take SELECT ... FOR UPDATE on it.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import TrackedBase
from royalty_kernel.domain.types import PhonogramInfo


class Phonogram(TrackedBase):
    """A sound recording identified by its ISRC."""

    __tablename__ = "phonograms"
    __table_args__ = (UniqueConstraint("isrc", name="uq_phonogram_isrc"),)

    isrc: Mapped[str] = mapped_column(String(12), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)

    artist: Mapped[str] = mapped_column(String(500), nullable=False)

    def to_dto(self) -> PhonogramInfo:
        return PhonogramInfo(id=self.id, isrc=self.isrc, title=self.title, artist=self.artist)

    def __repr__(self) -> str:
        return f"<Phonogram {self.isrc}: {self.title}>"
