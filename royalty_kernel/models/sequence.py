"""
Module: royalty_kernel.models.sequence
Responsibility: Named counter rows backing SequenceService.
Architecture position: Kernel > Models.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import Base


class SequenceCounter(Base):
    """
    A named, monotonically increasing counter.

    Row-level locking on this row serializes allocations.
    """

    __tablename__ = "sequence_counters"

    # e.g. "batch_number"
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
