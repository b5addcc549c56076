"""
AttributionService -- read-side ownership lookup by ISRC.

Responsibility:
    Answers "whose is this play" for airplay reports: the owners of a
    phonogram on a date with their tax ids and percentages, or a marker
    when nobody can be credited.

Architecture position:
    Kernel > Services.  Reads through RegistryService, OwnershipService and
    ConflictService; writes nothing.  The batch layer's airplay annotator
    is its caller.

Invariants enforced:
    - An unknown ISRC, or a phonogram with no positive share on the date,
      is UNASSIGNED.
    - A conflict effective on the date takes precedence over any share:
      the play is IN_CONFLICT and carries no shares.
    - ASSIGNED shares are ordered by tax id.

Failure modes:
    - InvalidIsrcError for a malformed ISRC.
"""

from datetime import date

from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.identifiers import validate_isrc
from royalty_kernel.domain.types import AttributedShare, AttributionStatus, PlayAttribution
from royalty_kernel.exceptions import PhonogramNotFoundError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.phonogram import Phonogram
from royalty_kernel.services.base import BaseService
from royalty_kernel.services.conflict_service import ConflictService
from royalty_kernel.services.ownership_service import OwnershipService
from royalty_kernel.services.registry_service import RegistryService

logger = get_logger("services.attribution")


class AttributionService(BaseService[Phonogram]):
    """
    Ownership annotations for plays of a phonogram.

    Non-goals:
        - Does NOT modify any data (read-only).
    """

    def __init__(
        self,
        session: Session,
        registry: RegistryService | None = None,
        ownership: OwnershipService | None = None,
        conflicts: ConflictService | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._registry = registry or RegistryService(session, clock=self.clock)
        self._ownership = ownership or OwnershipService(session, clock=self.clock)
        self._conflicts = conflicts or ConflictService(
            session, self._ownership, clock=self.clock
        )

    def attribute(self, isrc: str, at_date: date | None = None) -> PlayAttribution:
        """
        Owners of the phonogram ``isrc`` on ``at_date`` (default: today).

        Raises:
            InvalidIsrcError: if ``isrc`` is not a valid ISRC.
        """
        normalized = validate_isrc(isrc)
        at_date = at_date or self.clock.today()

        try:
            phonogram = self._registry.get_phonogram_by_isrc(normalized)
        except PhonogramNotFoundError:
            logger.debug("attribution_unknown_isrc", extra={"isrc": normalized})
            return PlayAttribution(normalized, at_date, AttributionStatus.UNASSIGNED)

        conflict = self._conflicts.open_conflict_for(phonogram.id, at_date)
        if conflict is not None:
            return PlayAttribution(
                normalized,
                at_date,
                AttributionStatus.IN_CONFLICT,
                phonogram_id=phonogram.id,
                conflict_id=conflict.id,
            )

        shares = []
        for share in self._ownership.active_ownership(phonogram.id, at_date):
            if share.percentage <= 0:
                continue
            owner = self._registry.get_productora(share.productora_id)
            shares.append(
                AttributedShare(
                    productora_id=owner.id,
                    cuit=owner.cuit,
                    name=owner.name,
                    percentage=share.percentage,
                )
            )
        if not shares:
            return PlayAttribution(
                normalized,
                at_date,
                AttributionStatus.UNASSIGNED,
                phonogram_id=phonogram.id,
            )

        return PlayAttribution(
            normalized,
            at_date,
            AttributionStatus.ASSIGNED,
            phonogram_id=phonogram.id,
            shares=tuple(sorted(shares, key=lambda s: s.cuit)),
        )
