"""
Module: royalty_kernel.selectors.conflict_selector
Responsibility: Listing of conflicts by state, phonogram and involved
    productora, for the request layer and for reports.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from royalty_kernel.domain.types import ConflictInfo, ConflictState
from royalty_kernel.models.conflict import Conflict, InvolvedParty
from royalty_kernel.selectors.base import BaseSelector


class ConflictSelector(BaseSelector[Conflict]):
    """Read-only conflict queries.  Newest conflicts first."""

    def list_conflicts(
        self,
        state: ConflictState | None = None,
        phonogram_id: UUID | None = None,
        productora_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConflictInfo]:
        stmt = select(Conflict)
        if state is not None:
            stmt = stmt.where(Conflict.state == ConflictState(state).value)
        if phonogram_id is not None:
            stmt = stmt.where(Conflict.phonogram_id == phonogram_id)
        if productora_id is not None:
            stmt = stmt.where(
                Conflict.id.in_(
                    select(InvolvedParty.conflict_id).where(
                        InvolvedParty.productora_id == productora_id
                    )
                )
            )
        rows = self.session.execute(
            stmt.order_by(Conflict.opened_at.desc()).limit(limit).offset(offset)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def open_conflicts(self) -> list[ConflictInfo]:
        rows = self.session.execute(
            select(Conflict)
            .where(
                Conflict.state.in_(
                    (ConflictState.OPEN.value, ConflictState.IN_PROGRESS.value)
                )
            )
            .order_by(Conflict.opened_at)
        ).scalars().all()
        return [row.to_dto() for row in rows]
