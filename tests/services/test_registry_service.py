"""
Tests for RegistryService: productora and phonogram registration, lookups,
and the audit entries every registration leaves behind.
"""

from uuid import uuid4

import pytest

from royalty_kernel.exceptions import (
    DuplicatePhonogramError,
    DuplicateProductoraError,
    InvalidIsrcError,
    InvalidTaxIdError,
    MissingFieldError,
    PhonogramNotFoundError,
    ProductoraNotFoundError,
)
from royalty_kernel.selectors.audit_selector import AuditSelector


class TestProductoras:
    def test_register_normalizes_cuit(self, registry, actor_id):
        info = registry.register_productora("30-71234567-8", "  Sello Sur  ", actor_id)

        assert info.cuit == "30712345678"
        assert info.name == "Sello Sur"
        assert info.balance == 0
        assert not info.posting_halted

    def test_duplicate_cuit_refused(self, registry, actor_id):
        registry.register_productora("30712345678", "First", actor_id)
        with pytest.raises(DuplicateProductoraError):
            registry.register_productora("30-71234567-8", "Second", actor_id)

    def test_invalid_cuit_refused(self, registry, actor_id):
        with pytest.raises(InvalidTaxIdError):
            registry.register_productora("123", "Short", actor_id)

    def test_blank_name_refused(self, registry, actor_id):
        with pytest.raises(MissingFieldError):
            registry.register_productora("30712345678", "   ", actor_id)

    def test_lookup_by_cuit(self, registry, make_productora):
        created = make_productora(cuit="20111111112")

        assert registry.get_productora_by_cuit("20-11111111-2").id == created.id
        assert registry.find_productora_by_cuit("20999999999") is None

    def test_lookup_by_id(self, registry, make_productora):
        created = make_productora()

        assert registry.get_productora(created.id) == created
        with pytest.raises(ProductoraNotFoundError):
            registry.get_productora(uuid4())

    def test_unknown_cuit_is_not_found(self, registry):
        with pytest.raises(ProductoraNotFoundError) as exc_info:
            registry.get_productora_by_cuit("20999999999")
        assert exc_info.value.reason == "productora not found"

    def test_contact_update(self, registry, make_productora, actor_id):
        created = make_productora()
        updated = registry.update_productora_contact(
            created.id, actor_id, email="royalties@example.com"
        )
        assert updated.email == "royalties@example.com"
        assert updated.name == created.name


class TestPhonograms:
    def test_register_and_lookup(self, registry, actor_id):
        info = registry.register_phonogram("ar-abc-24-00001", "Zamba", "Trio", actor_id)

        assert info.isrc == "ARABC2400001"
        assert registry.get_phonogram_by_isrc("ARABC2400001").id == info.id

    def test_duplicate_isrc_refused(self, registry, make_phonogram, actor_id):
        make_phonogram(isrc="ARABC2400001")
        with pytest.raises(DuplicatePhonogramError):
            registry.register_phonogram("ARABC2400001", "Other", "Other", actor_id)

    def test_invalid_isrc_refused(self, registry, actor_id):
        with pytest.raises(InvalidIsrcError):
            registry.register_phonogram("NOPE", "Title", "Artist", actor_id)

    def test_lookup_by_id(self, registry, make_phonogram):
        created = make_phonogram()

        assert registry.get_phonogram(created.id).isrc == created.isrc
        with pytest.raises(PhonogramNotFoundError):
            registry.get_phonogram(uuid4())

    def test_unknown_isrc_is_not_found(self, registry):
        with pytest.raises(PhonogramNotFoundError) as exc_info:
            registry.get_phonogram_by_isrc("ARABC2499999")
        assert exc_info.value.reason == "phonogram not found"

    def test_correction_keeps_isrc(self, registry, make_phonogram, actor_id):
        created = make_phonogram()
        corrected = registry.correct_phonogram(created.id, actor_id, title="Zamba (remaster)")

        assert corrected.title == "Zamba (remaster)"
        assert corrected.isrc == created.isrc


class TestAudit:
    def test_every_registration_is_audited(self, session, registry, actor_id):
        productora = registry.register_productora("30712345678", "Sello", actor_id)
        phonogram = registry.register_phonogram("ARABC2400001", "Zamba", "Trio", actor_id)

        selector = AuditSelector(session)
        productora_trail = selector.entity_trail(productora.id)
        phonogram_trail = selector.entity_trail(phonogram.id)

        assert [r.operation for r in productora_trail] == ["insert"]
        assert productora_trail[0].table_name == "productoras"
        assert productora_trail[0].after["cuit"] == "30712345678"
        assert productora_trail[0].actor_id == actor_id
        assert [r.table_name for r in phonogram_trail] == ["phonograms"]
