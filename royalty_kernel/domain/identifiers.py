"""
Identifier validation for productoras (CUIT) and phonograms (ISRC).

Both validators normalize and return the canonical form, or raise the typed
validation error that batch processing records against the offending row.
"""

import re

from royalty_kernel.exceptions import InvalidIsrcError, InvalidTaxIdError

CUIT_PATTERN = re.compile(r"^[0-9]{11}$")

# CC-XXX-YY-NNNNN: country, registrant, year, designation
ISRC_PATTERN = re.compile(r"^[A-Z]{2}[0-9A-Z]{3}[0-9]{2}[0-9]{5}$")


def validate_cuit(value: object) -> str:
    """Return the CUIT with separators removed, or raise InvalidTaxIdError."""
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise InvalidTaxIdError(value)
    normalized = str(value).strip().replace("-", "")
    if not CUIT_PATTERN.match(normalized):
        raise InvalidTaxIdError(value)
    return normalized


def validate_isrc(value: object) -> str:
    """Return the upper-cased ISRC without hyphens, or raise InvalidIsrcError."""
    if not isinstance(value, str):
        raise InvalidIsrcError(value)
    normalized = value.strip().upper().replace("-", "")
    if not ISRC_PATTERN.match(normalized):
        raise InvalidIsrcError(value)
    return normalized


def is_valid_cuit(value: object) -> bool:
    try:
        validate_cuit(value)
        return True
    except InvalidTaxIdError:
        return False


def is_valid_isrc(value: object) -> bool:
    try:
        validate_isrc(value)
        return True
    except InvalidIsrcError:
        return False
