"""
RegistryService -- productora and phonogram registration.

Responsibility:
    Creates the two reference entities everything else hangs off, validating
    their identifiers (CUIT, ISRC) and auditing every mutation.  Provides the
    administrative correction path for phonogram metadata and the id / tax id
    / ISRC lookups the batch handlers use to resolve rows.

Architecture position:
    Kernel > Services.  Writes Productora and Phonogram rows; the ledger
    balance columns on Productora belong to LedgerService.

Invariants enforced:
    - CUIT is 11 digits and unique; ISRC is well-formed and unique.
    - ISRC never changes after registration (db/immutability.py).
    - Every INSERT/UPDATE produces an AuditEntry in the same transaction.

Failure modes:
    - InvalidTaxIdError / InvalidIsrcError on malformed identifiers.
    - DuplicateProductoraError / DuplicatePhonogramError on re-registration.
    - ProductoraNotFoundError / PhonogramNotFoundError on lookups.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.identifiers import validate_cuit, validate_isrc
from royalty_kernel.domain.types import PhonogramInfo, ProductoraInfo
from royalty_kernel.exceptions import (
    DuplicatePhonogramError,
    DuplicateProductoraError,
    MissingFieldError,
    PhonogramNotFoundError,
    ProductoraNotFoundError,
)
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.phonogram import Phonogram
from royalty_kernel.models.productora import Productora
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService

logger = get_logger("services.registry")


class RegistryService(BaseService[Productora]):
    """
    Registration and lookup of productoras and phonograms.

    Lookups by tax id / ISRC validate the identifier first, so a malformed
    value fails with a validation error rather than a not-found error.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)

    # Productoras

    def register_productora(
        self,
        cuit: str,
        name: str,
        actor_id: UUID,
        email: str | None = None,
    ) -> ProductoraInfo:
        normalized = validate_cuit(cuit)
        if not name or not name.strip():
            raise MissingFieldError("name")

        if self._find_productora(normalized) is not None:
            raise DuplicateProductoraError(normalized)

        productora = Productora(
            cuit=normalized,
            name=name.strip(),
            email=email,
            balance=Decimal("0.00"),
            last_sequence=0,
            posting_halted=False,
            created_by_id=actor_id,
        )
        self.session.add(productora)
        self._auditor.record_created(productora, actor_id)

        logger.info(
            "productora_registered",
            extra={"productora_id": str(productora.id), "cuit": normalized},
        )
        return productora.to_dto()

    def get_productora(self, productora_id: UUID) -> ProductoraInfo:
        return self._get_productora(productora_id).to_dto()

    def get_productora_by_cuit(self, cuit: str) -> ProductoraInfo:
        normalized = validate_cuit(cuit)
        productora = self._find_productora(normalized)
        if productora is None:
            raise ProductoraNotFoundError(cuit=normalized)
        return productora.to_dto()

    def find_productora_by_cuit(self, cuit: str) -> ProductoraInfo | None:
        productora = self._find_productora(validate_cuit(cuit))
        return productora.to_dto() if productora else None

    def update_productora_contact(
        self,
        productora_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        email: str | None = None,
    ) -> ProductoraInfo:
        productora = self._get_productora(productora_id)
        with self._auditor.mutation(productora, actor_id):
            if name is not None:
                if not name.strip():
                    raise MissingFieldError("name")
                productora.name = name.strip()
            if email is not None:
                productora.email = email or None
        return productora.to_dto()

    # Phonograms

    def register_phonogram(
        self,
        isrc: str,
        title: str,
        artist: str,
        actor_id: UUID,
    ) -> PhonogramInfo:
        normalized = validate_isrc(isrc)
        if not title or not title.strip():
            raise MissingFieldError("title")
        if not artist or not artist.strip():
            raise MissingFieldError("artist")

        if self._find_phonogram(normalized) is not None:
            raise DuplicatePhonogramError(normalized)

        phonogram = Phonogram(
            isrc=normalized,
            title=title.strip(),
            artist=artist.strip(),
            created_by_id=actor_id,
        )
        self.session.add(phonogram)
        self._auditor.record_created(phonogram, actor_id)

        logger.info(
            "phonogram_registered",
            extra={"phonogram_id": str(phonogram.id), "isrc": normalized},
        )
        return phonogram.to_dto()

    def correct_phonogram(
        self,
        phonogram_id: UUID,
        actor_id: UUID,
        title: str | None = None,
        artist: str | None = None,
    ) -> PhonogramInfo:
        """Administrative correction of title / artist.  The ISRC is fixed."""
        phonogram = self._get_phonogram(phonogram_id)
        with self._auditor.mutation(phonogram, actor_id):
            if title is not None:
                if not title.strip():
                    raise MissingFieldError("title")
                phonogram.title = title.strip()
            if artist is not None:
                if not artist.strip():
                    raise MissingFieldError("artist")
                phonogram.artist = artist.strip()

        logger.info("phonogram_corrected", extra={"phonogram_id": str(phonogram_id)})
        return phonogram.to_dto()

    def get_phonogram(self, phonogram_id: UUID) -> PhonogramInfo:
        return self._get_phonogram(phonogram_id).to_dto()

    def get_phonogram_by_isrc(self, isrc: str) -> PhonogramInfo:
        normalized = validate_isrc(isrc)
        phonogram = self._find_phonogram(normalized)
        if phonogram is None:
            raise PhonogramNotFoundError(isrc=normalized)
        return phonogram.to_dto()

    # Internals

    def _get_productora(self, productora_id: UUID) -> Productora:
        productora = self.session.get(Productora, productora_id)
        if productora is None:
            raise ProductoraNotFoundError(productora_id=str(productora_id))
        return productora

    def _find_productora(self, cuit: str) -> Productora | None:
        return self.session.execute(
            select(Productora).where(Productora.cuit == cuit)
        ).scalar_one_or_none()

    def _get_phonogram(self, phonogram_id: UUID) -> Phonogram:
        phonogram = self.session.get(Phonogram, phonogram_id)
        if phonogram is None:
            raise PhonogramNotFoundError(phonogram_id=str(phonogram_id))
        return phonogram

    def _find_phonogram(self, isrc: str) -> Phonogram | None:
        return self.session.execute(
            select(Phonogram).where(Phonogram.isrc == isrc)
        ).scalar_one_or_none()
