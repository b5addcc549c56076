"""
Typed field access for decoded batch rows.

Rows arrive as mappings of already-typed values (Decimal amounts, date
objects) from the request layer or the TSV adapter.  Malformed values are
passed through untouched, so the helpers here are where they get rejected.
"""

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from royalty_kernel.domain.identifiers import validate_cuit, validate_isrc
from royalty_kernel.domain.values import parse_amount, parse_percentage
from royalty_kernel.exceptions import MissingFieldError, ValidationError


def _present(row: Mapping[str, Any], name: str) -> bool:
    value = row.get(name)
    return value is not None and not (isinstance(value, str) and not value.strip())


def require(row: Mapping[str, Any], name: str) -> Any:
    if not _present(row, name):
        raise MissingFieldError(name)
    return row[name]


def cuit(row: Mapping[str, Any], name: str = "cuit") -> str:
    return validate_cuit(require(row, name))


def isrc(row: Mapping[str, Any], name: str = "isrc") -> str:
    return validate_isrc(require(row, name))


def amount(row: Mapping[str, Any], name: str = "amount", *, allow_zero: bool = False) -> Decimal:
    return parse_amount(require(row, name), allow_zero=allow_zero)


def percentage(row: Mapping[str, Any], name: str = "percentage") -> Decimal:
    return parse_percentage(require(row, name))


def optional_text(row: Mapping[str, Any], name: str) -> str | None:
    if not _present(row, name):
        return None
    return str(row[name]).strip()


def optional_date(row: Mapping[str, Any], name: str, default: date) -> date:
    if not _present(row, name):
        return default
    value = row[name]
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationError(f"Field {name} is not a date: {value!r}")


def has(row: Mapping[str, Any], name: str) -> bool:
    return _present(row, name)
