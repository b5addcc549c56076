"""
Module: royalty_kernel.models.productora
Responsibility: ORM persistence for productoras (rights-holder companies) and
    their cached ledger balance.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - cuit is unique (uq_productora_cuit).
    - balance is a read optimization: it must equal the balance_after of the
      productora's latest LedgerTransaction.  Only LedgerService writes it,
      while holding the row lock.
    - last_sequence is the chain position of the latest transaction; it is
      incremented under the same lock, so positions are gap-free.

Failure modes:
    - IntegrityError on duplicate cuit.
"""

from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import TrackedBase
from royalty_kernel.domain.types import ProductoraInfo


class Productora(TrackedBase):
    """
    A rights-holder company receiving royalty money.

    A productora flagged ``posting_halted`` accepts no ledger posts until
    ``LedgerService.reconcile`` clears the flag.
    """

    __tablename__ = "productoras"
    __table_args__ = (
        UniqueConstraint("cuit", name="uq_productora_cuit"),
        Index("idx_productora_name", "name"),
    )

    cuit: Mapped[str] = mapped_column(String(11), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Recipient of post-commit notifications
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    last_sequence: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    posting_halted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    halted_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def to_dto(self) -> ProductoraInfo:
        return ProductoraInfo(
            id=self.id,
            cuit=self.cuit,
            name=self.name,
            email=self.email,
            balance=self.balance,
            posting_halted=self.posting_halted,
        )

    def __repr__(self) -> str:
        return f"<Productora {self.cuit}: {self.name}>"
